"""
账单汇总服务
对账期内每一天取有效状态，累计份数乘以单价得到费用，再与当前余额比较得出
应付（due）、预付（advance）或结清（settled）
"""

from typing import List, Optional

from ..core.security import require_role, require_self_or_manager
from ..models.billing import BreakfastSummary, DailyCharge, DueStatus, MonthlySummary, OverallSummary
from ..models.ledger import BalanceType
from ..models.meal import MealType
from ..models.user import Actor, Role
from ..repositories import UserRepository
from ..utils.calendar import span_days
from .breakfast_service import BreakfastService
from .eligibility_service import EligibilityService
from .ledger_service import LedgerService
from .month_service import MonthService
from .rate_service import RateService


class BillingService:
    """账单服务"""

    def __init__(self, eligibility_service: EligibilityService, rate_service: RateService,
                 month_service: MonthService, ledger_service: LedgerService,
                 breakfast_service: BreakfastService,
                 users: Optional[UserRepository] = None):
        self.eligibility_service = eligibility_service
        self.rate_service = rate_service
        self.month_service = month_service
        self.ledger_service = ledger_service
        self.breakfast_service = breakfast_service
        self.users = users or UserRepository(ledger_service.db)

    def monthly_summary(self, actor: Actor, user_id: int, year: int, month: int,
                        meal_type: str, include_daily: bool = False) -> MonthlySummary:
        """某用户某月某餐的份数、费用、余额和应付状态"""
        require_self_or_manager(actor, user_id)
        meal_type = MealType(meal_type).value
        window = self.month_service.get_month(year, month)
        statuses = self.eligibility_service.statuses(user_id, window.start_date, window.end_date,
                                                     meal_type)
        settings = self.eligibility_service.policy_service.get_settings()
        rules_on = settings.rate_rules.enabled
        holidays = (
            self.eligibility_service.holiday_service.holidays_in_range(window.start_date, window.end_date)
            if rules_on else []
        )
        base_rate = window.rate_for(meal_type)

        days_on = total_meals = total_charge = 0
        daily = []
        for status in statuses:
            if rules_on:
                rate = self.rate_service.resolve(base_rate, status.date, meal_type,
                                                 settings=settings, holidays=holidays).final_rate_cents
            else:
                rate = base_rate
            meals = status.count if status.is_on else 0
            charge = meals * rate
            if status.is_on:
                days_on += 1
            total_meals += meals
            total_charge += charge
            if include_daily:
                daily.append(DailyCharge(date=status.date, is_on=status.is_on, count=meals,
                                         rate_cents=rate, charge_cents=charge,
                                         source=status.source.value))

        balance = self.ledger_service.get_balance(user_id, meal_type).amount_cents
        due = total_charge - balance
        return MonthlySummary(
            user_id=user_id, year=year, month=month, meal_type=meal_type,
            start_date=window.start_date, end_date=window.end_date,
            total_days=span_days(window.start_date, window.end_date),
            days_on=days_on, total_meals=total_meals, total_charge_cents=total_charge,
            balance_cents=balance, due_cents=due, status=DueStatus.classify(due),
            rate_rules_applied=rules_on, daily=daily if include_daily else None,
        )

    def breakfast_summary(self, actor: Actor, user_id: int, year: int, month: int) -> BreakfastSummary:
        """早餐按事件分摊额累计，而不是单价乘份数"""
        require_self_or_manager(actor, user_id)
        window = self.month_service.get_month(year, month)
        events, cost = self.breakfast_service.user_cost(user_id, window.start_date, window.end_date)
        balance = self.ledger_service.get_balance(user_id, BalanceType.BREAKFAST).amount_cents
        due = cost - balance
        return BreakfastSummary(
            user_id=user_id, start_date=window.start_date, end_date=window.end_date,
            events=events, total_cost_cents=cost, balance_cents=balance,
            due_cents=due, status=DueStatus.classify(due),
        )

    def overall_summary(self, actor: Actor, user_id: int, year: int, month: int) -> OverallSummary:
        """午餐、晚餐和早餐合计"""
        lunch = self.monthly_summary(actor, user_id, year, month, MealType.LUNCH)
        dinner = self.monthly_summary(actor, user_id, year, month, MealType.DINNER)
        breakfast = self.breakfast_summary(actor, user_id, year, month)
        total_charge = lunch.total_charge_cents + dinner.total_charge_cents + breakfast.total_cost_cents
        total_balance = lunch.balance_cents + dinner.balance_cents + breakfast.balance_cents
        due = total_charge - total_balance
        return OverallSummary(
            user_id=user_id, year=year, month=month, lunch=lunch, dinner=dinner,
            breakfast=breakfast, total_charge_cents=total_charge,
            total_balance_cents=total_balance, due_cents=due, status=DueStatus.classify(due),
        )

    def monthly_report(self, actor: Actor, year: int, month: int,
                       status: Optional[str] = None) -> List[OverallSummary]:
        """所有在用用户的月度汇总，可按应付状态筛选（例如只看欠费用户）"""
        require_role(actor, Role.MANAGER)
        wanted = DueStatus(status) if status else None
        report = []
        for user in self.users.list_active():
            summary = self.overall_summary(actor, user.id, year, month)
            if wanted is None or summary.status == wanted:
                report.append(summary)
        return report
