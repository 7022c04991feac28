"""
月度账期生命周期服务

状态：Draft（未持久化，读取时返回默认预览）→ Open（已配置）→ Finalized（已结账）
→ CarriedForward（已结转）

- 结账后拒绝修改费率/日期、重算和恢复默认
- 结转只能在结账后进行一次，为每个非零余额写一笔零金额调整流水
- 超级管理员可以强制修改或取消结账，必须填写原因并写入审计
"""

import logging
from datetime import date
from typing import List, Optional, Union

from ..core.clock import Clock, SystemClock
from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import BaseApplicationError, NotFoundError, PolicyError, ValidationError
from ..core.security import require_role
from ..config.settings import settings as app_settings
from ..models.audit import AuditEntry
from ..models.ledger import BalanceType
from ..models.meal import MealType
from ..models.month import (
    CarryForwardEntry,
    CarryForwardReport,
    DefaultedMonthPreview,
    MonthConfigureRequest,
    MonthForceUpdateRequest,
    PersistedMonth,
    RecalculationReport,
    ResetReport,
    UserFailure,
)
from ..models.user import Actor, Role
from ..repositories import AuditRepository, MealRepository, MonthRepository, UserRepository
from ..utils.calendar import iter_dates, month_bounds, normalize, validate_range
from .eligibility_service import EligibilityService, is_default_meal_off
from .ledger_service import LedgerService
from .policy_service import PolicyService

logger = logging.getLogger(__name__)

MonthView = Union[PersistedMonth, DefaultedMonthPreview]


class MonthService:
    """月度账期服务"""

    def __init__(self, policy_service: PolicyService, eligibility_service: EligibilityService,
                 ledger_service: LedgerService,
                 db: Optional[DatabaseManager] = None,
                 months: Optional[MonthRepository] = None,
                 meals: Optional[MealRepository] = None,
                 users: Optional[UserRepository] = None,
                 audit: Optional[AuditRepository] = None,
                 clock: Optional[Clock] = None,
                 max_range_days: Optional[int] = None):
        self.db = db or db_manager
        self.policy_service = policy_service
        self.eligibility_service = eligibility_service
        self.ledger_service = ledger_service
        self.months = months or MonthRepository(self.db)
        self.meals = meals or MealRepository(self.db)
        self.users = users or UserRepository(self.db)
        self.audit = audit or AuditRepository(self.db)
        self.clock = clock or SystemClock()
        self.max_range_days = max_range_days or app_settings.max_range_days

    # ---- 查询 ----

    def get_month(self, year: int, month: int) -> MonthView:
        """已持久化的月份设置，否则返回不落库的默认预览"""
        self._validate_year_month(year, month)
        persisted = self.months.get(year, month)
        if persisted is not None:
            return persisted
        start, end = month_bounds(year, month)
        rates = self.policy_service.get_settings().default_rates
        return DefaultedMonthPreview(year=year, month=month, start_date=start, end_date=end,
                                     lunch_rate_cents=rates.lunch, dinner_rate_cents=rates.dinner)

    def month_for_date(self, d: date) -> MonthView:
        """包含该日期的已持久化账期，否则为该日期所在自然月"""
        d = normalize(d)
        return self.months.find_containing(d) or self.get_month(d.year, d.month)

    def current_month(self) -> MonthView:
        return self.month_for_date(self.clock.today())

    def list_months(self, year: Optional[int] = None) -> List[PersistedMonth]:
        return self.months.list_months(year)

    def force_updates(self, year: int, month: int) -> List[AuditEntry]:
        """强制修改历史（before/after 快照）"""
        persisted = self._require_persisted(year, month)
        return [
            e for e in self.audit.for_entity("month_settings", persisted.month_id)
            if e.action.startswith("force_")
        ]

    # ---- 状态变更 ----

    def configure(self, actor: Actor, req: MonthConfigureRequest) -> PersistedMonth:
        """创建或更新月份设置（Draft/Open → Open）"""
        require_role(actor, Role.MANAGER)
        default_start, default_end = month_bounds(req.year, req.month)
        start, end = validate_range(req.start_date or default_start, req.end_date or default_end,
                                    self.max_range_days)
        fields = {
            "start_date": start,
            "end_date": end,
            "lunch_rate_cents": req.lunch_rate_cents,
            "dinner_rate_cents": req.dinner_rate_cents,
            "notes": req.notes,
            "modified_by": actor.user_id,
        }
        with self.db.transaction():
            before = self.months.get(req.year, req.month)
            if before is None:
                after = self.months.create(req.year, req.month, start, end, req.lunch_rate_cents,
                                           req.dinner_rate_cents, req.notes, actor.user_id)
            else:
                after = self.months.update_open(req.year, req.month, fields)
                if after is None:
                    raise self._finalized_error(req.year, req.month)
            self.audit.record("month_settings", after.month_id,
                              "create" if before is None else "update", actor.user_id,
                              before=before.model_dump(mode="json") if before else None,
                              after=after.model_dump(mode="json"))
        return after

    def finalize(self, actor: Actor, year: int, month: int) -> PersistedMonth:
        """Open → Finalized"""
        require_role(actor, Role.MANAGER)
        with self.db.transaction():
            before = self._require_persisted(year, month)
            if not self.months.mark_finalized(year, month, actor.user_id, self.clock.local_now()):
                raise PolicyError("month_finalized", "该月份已结账", {"year": year, "month": month})
            after = self.months.get(year, month)
            self.audit.record("month_settings", after.month_id, "finalize", actor.user_id,
                              before=before.model_dump(mode="json"),
                              after=after.model_dump(mode="json"))
        logger.info("month %s-%02d finalized by %s", year, month, actor.user_id)
        return after

    def carry_forward(self, actor: Actor, year: int, month: int) -> CarryForwardReport:
        """
        Finalized → CarriedForward

        先以条件更新抢占结转标记，再逐个用户写结转说明流水；
        每个用户独立成功或失败，失败项在报告中列出
        """
        require_role(actor, Role.ADMIN)
        persisted = self._require_persisted(year, month)
        if not persisted.is_finalized:
            raise PolicyError("not_finalized", "月份未结账，不能结转", {"year": year, "month": month})
        with self.db.transaction():
            if not self.months.claim_carry_forward(year, month, actor.user_id, self.clock.local_now()):
                raise PolicyError("already_carried_forward", "该月份已结转",
                                  {"year": year, "month": month})
            self.audit.record("month_settings", persisted.month_id, "carry_forward", actor.user_id,
                              before=persisted.model_dump(mode="json"))

        report = CarryForwardReport(year=year, month=month)
        description = f"{year}-{month:02d} 结转余额"
        for user_id in self.users.list_ids():
            try:
                with self.db.transaction():
                    for bt in BalanceType:
                        txn = self.ledger_service.record_carry_forward(
                            actor, user_id, bt, persisted.month_id, description)
                        if txn is not None:
                            report.entries.append(CarryForwardEntry(
                                user_id=user_id, balance_type=bt.value,
                                amount_cents=txn.new_balance_cents,
                                transaction_id=txn.transaction_id,
                            ))
            except BaseApplicationError as e:
                logger.warning("carry forward failed for user %s: %s", user_id, e.message)
                report.failed.append(UserFailure(user_id=user_id, reason=e.error_code, message=e.message))
                continue
            report.users_processed += 1
        logger.info("month %s-%02d carried forward by %s: %d entries, %d failed",
                    year, month, actor.user_id, len(report.entries), len(report.failed))
        return report

    def force_update(self, actor: Actor, year: int, month: int,
                     req: MonthForceUpdateRequest) -> PersistedMonth:
        """超级管理员强制修改（包括已结账月份）"""
        require_role(actor, Role.SUPERADMIN, "只有超级管理员可以强制修改")
        reason = self._require_reason(req.reason)
        fields = req.model_dump(exclude={"reason"}, exclude_unset=True)
        fields = {k: v for k, v in fields.items() if v is not None}
        if not fields:
            raise ValidationError("没有需要修改的字段")
        with self.db.transaction():
            before = self._require_persisted(year, month)
            start = fields.get("start_date", before.start_date)
            end = fields.get("end_date", before.end_date)
            validate_range(start, end, self.max_range_days)
            fields["modified_by"] = actor.user_id
            after = self.months.force_update(year, month, fields)
            self.audit.record("month_settings", before.month_id, "force_update", actor.user_id,
                              before=before.model_dump(mode="json"),
                              after=after.model_dump(mode="json"), reason=reason)
        logger.info("month %s-%02d force updated by %s: %s", year, month, actor.user_id, reason)
        return after

    def force_unfinalize(self, actor: Actor, year: int, month: int, reason: str) -> PersistedMonth:
        """超级管理员取消结账；结转标记保持不变"""
        require_role(actor, Role.SUPERADMIN, "只有超级管理员可以取消结账")
        reason = self._require_reason(reason)
        with self.db.transaction():
            before = self._require_persisted(year, month)
            if not before.is_finalized:
                raise PolicyError("not_finalized", "该月份未结账", {"year": year, "month": month})
            after = self.months.force_update(year, month, {
                "is_finalized": False,
                "finalized_at": None,
                "finalized_by": None,
                "modified_by": actor.user_id,
            })
            self.audit.record("month_settings", before.month_id, "force_unfinalize", actor.user_id,
                              before=before.model_dump(mode="json"),
                              after=after.model_dump(mode="json"), reason=reason)
        logger.info("month %s-%02d unfinalized by %s: %s", year, month, actor.user_id, reason)
        return after

    # ---- 餐次重算 ----

    def recalculate(self, actor: Actor, year: int, month: int, meal_type: Optional[str] = None,
                    user_id: Optional[int] = None) -> RecalculationReport:
        """
        把账期内所有非手动记录重新物化为当前默认状态；手动记录保持不变
        meal_type 为空时午餐和晚餐都重算；user_id 为空时重算所有在用用户
        """
        require_role(actor, Role.MANAGER)
        meal_types = self._meal_types(meal_type)
        persisted = self._require_persisted(year, month)
        if persisted.is_finalized:
            raise self._finalized_error(year, month)
        if user_id is not None and not self.users.exists(user_id):
            raise NotFoundError("用户", user_id)
        settings = self.policy_service.get_settings()
        holidays = self.eligibility_service.holiday_service.holidays_in_range(
            persisted.start_date, persisted.end_date)
        user_ids = [user_id] if user_id is not None else [u.id for u in self.users.list_active()]
        report = RecalculationReport(year=year, month=month, meal_type=self._single(meal_types),
                                     user_id=user_id)
        for d in iter_dates(persisted.start_date, persisted.end_date):
            off = is_default_meal_off(d, holidays, settings)
            try:
                written, kept = self._recalculate_day(d, user_ids, meal_types, off.is_off, settings)
            except BaseApplicationError as e:
                logger.warning("recalculation failed on %s: %s", d, e.message)
                report.failed.append({"date": d.isoformat(), "reason": e.error_code, "message": e.message})
                continue
            report.applied.append(d)
            report.records_written += written
            report.manual_records_kept += kept
        with self.db.transaction():
            self.audit.record("month_settings", persisted.month_id, "recalculate", actor.user_id,
                              after=report.model_dump(mode="json"))
        return report

    def _recalculate_day(self, d: date, user_ids: List[int], meal_types: List[MealType],
                         is_off: bool, settings):
        written = kept = 0
        with self.db.transaction():
            for meal_type in meal_types:
                existing = self.meals.list_for_date(d, meal_type.value)
                is_on = not is_off and getattr(settings.default_meal_status, meal_type.value)
                for user_id in user_ids:
                    record = existing.get(user_id)
                    if record is not None and record.is_manually_set:
                        kept += 1
                        continue
                    self.meals.upsert_default(user_id, d, meal_type.value, is_on, 1 if is_on else 0)
                    written += 1
        return written, kept

    def reset_to_default(self, actor: Actor, start: date, end: date,
                         user_id: Optional[int] = None, meal_type: Optional[str] = None) -> ResetReport:
        """删除区间内的手动记录，让默认状态重新生效（不可撤销）"""
        require_role(actor, Role.ADMIN)
        meal_type = self._single(self._meal_types(meal_type))
        start, end = validate_range(start, end, self.max_range_days)
        with self.db.transaction():
            for m in self.months.list_overlapping(start, end):
                if m.is_finalized:
                    raise self._finalized_error(m.year, m.month)
            for d in (start, end):
                calendar_month = self.months.get(d.year, d.month)
                if calendar_month is not None and calendar_month.is_finalized:
                    raise self._finalized_error(d.year, d.month)
            deleted = self.meals.delete_manual_in_range(start, end, user_id, meal_type)
            self.audit.record("meal", f"{start.isoformat()}..{end.isoformat()}", "reset_to_default",
                              actor.user_id, user_id=user_id,
                              after={"deleted": deleted, "meal_type": meal_type})
        logger.info("reset %d manual meal records in %s..%s by %s", deleted, start, end, actor.user_id)
        return ResetReport(start_date=start, end_date=end, meal_type=meal_type, user_id=user_id,
                           deleted=deleted)

    # ---- 辅助 ----

    def _require_persisted(self, year: int, month: int) -> PersistedMonth:
        self._validate_year_month(year, month)
        persisted = self.months.get(year, month)
        if persisted is None:
            raise NotFoundError("月份设置", f"{year}-{month:02d}")
        return persisted

    @staticmethod
    def _validate_year_month(year: int, month: int):
        if not 2020 <= year <= 2100:
            raise ValidationError(f"年份超出范围: {year}")
        if not 1 <= month <= 12:
            raise ValidationError(f"月份必须在 1-12 之间: {month}")

    @staticmethod
    def _meal_types(meal_type: Optional[str]) -> List[MealType]:
        """空值或 both 表示午餐和晚餐"""
        if meal_type is None or meal_type == "both":
            return list(MealType)
        try:
            return [MealType(meal_type)]
        except ValueError:
            raise ValidationError(f"无效的餐次类型: {meal_type}", {"meal_type": meal_type})

    @staticmethod
    def _single(meal_types: List[MealType]) -> Optional[str]:
        return meal_types[0].value if len(meal_types) == 1 else None

    @staticmethod
    def _require_reason(reason: Optional[str]) -> str:
        if not reason or not reason.strip():
            raise ValidationError("必须填写原因")
        return reason.strip()

    @staticmethod
    def _finalized_error(year: int, month: int) -> PolicyError:
        return PolicyError("month_finalized", "该月份已结账，不能修改", {"year": year, "month": month})
