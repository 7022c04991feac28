"""
费率规则引擎
按优先级从高到低评估条件规则，得到每餐最终单价

评估规则：
- 规则集关闭时直接返回基础价，命中列表为空
- 只评估启用、在有效期内、适用于该餐次的规则；优先级相同保持原顺序
- fixed 直接设定单价；percentage / multiplier 总是基于基础价计算，
  因此后命中的规则会覆盖先命中的结果（保留的兼容行为）
- user_count 条件的上下限未设置时不限，设置为 0 时按 0 计
- 调整值在写入时校验，不会得到负单价；最终单价四舍五入到分
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from ..models.holiday import Holiday
from ..models.policy import (
    AdjustmentType,
    AppliedRule,
    ConditionType,
    PolicySettings,
    RateResolution,
    RateRule,
)
from ..repositories import MonthRepository
from ..utils.calendar import normalize, weekday_sun0
from .holiday_service import HolidayService
from .policy_service import PolicyService


def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def condition_matches(rule: RateRule, d: date, holidays: List[Holiday],
                      user_count: Optional[int]) -> bool:
    params = rule.condition_params
    ctype = rule.condition_type
    if ctype == ConditionType.DAY_OF_WEEK:
        return weekday_sun0(d) in (params.days or [])
    if ctype == ConditionType.DATE_RANGE:
        if params.start_date and d < params.start_date:
            return False
        if params.end_date and d > params.end_date:
            return False
        return True
    if ctype == ConditionType.HOLIDAY:
        for h in holidays:
            if not h.matches(d):
                continue
            if not params.holiday_types or h.type in params.holiday_types:
                return True
        return False
    if ctype == ConditionType.USER_COUNT:
        if user_count is None:
            return False
        low = params.min_users if params.min_users is not None else 0
        high = params.max_users if params.max_users is not None else float("inf")
        return low <= user_count <= high
    if ctype == ConditionType.SPECIAL_EVENT:
        return bool(params.event_name)
    return False


def apply_adjustment(rule: RateRule, base: Decimal, current: Decimal) -> Decimal:
    value = Decimal(str(rule.adjustment.value))
    kind = rule.adjustment.type
    if kind == AdjustmentType.FIXED:
        return value
    if kind == AdjustmentType.PERCENTAGE:
        return base * (1 + value / 100)
    if kind == AdjustmentType.MULTIPLIER:
        return base * value
    return current


def resolve_rate(base_rate_cents: int, d: date, meal_type: str, settings: PolicySettings,
                 holidays: List[Holiday], user_count: Optional[int] = None) -> RateResolution:
    """解析某日某餐的最终单价（分）"""
    d = normalize(d)
    rule_set = settings.rate_rules
    if not rule_set.enabled:
        return RateResolution(base_rate_cents=base_rate_cents, final_rate_cents=base_rate_cents)

    candidates = [
        r for r in rule_set.rules
        if r.is_active and r.is_valid_on(d) and r.applies_to(meal_type)
    ]
    # sorted 是稳定排序，同优先级保持原顺序
    candidates = sorted(candidates, key=lambda r: r.priority, reverse=True)

    base = Decimal(base_rate_cents)
    rate = base
    applied = []
    for rule in candidates:
        if not condition_matches(rule, d, holidays, user_count):
            continue
        rate = apply_adjustment(rule, base, rate)
        applied.append(AppliedRule(
            rule_id=rule.id,
            name=rule.name,
            priority=rule.priority,
            adjustment_type=rule.adjustment.type,
            value=rule.adjustment.value,
            rate_after=float(rate),
        ))
    return RateResolution(base_rate_cents=base_rate_cents, final_rate_cents=round_cents(rate),
                          applied_rules=applied)


class RateService:
    """费率服务：在引擎之上补齐策略、节假日和基础价"""

    def __init__(self, policy_service: PolicyService, holiday_service: HolidayService,
                 months: Optional[MonthRepository] = None):
        self.policy_service = policy_service
        self.holiday_service = holiday_service
        self.months = months or MonthRepository(holiday_service.db)

    def resolve(self, base_rate_cents: int, d: date, meal_type: str,
                user_count: Optional[int] = None,
                settings: Optional[PolicySettings] = None,
                holidays: Optional[List[Holiday]] = None) -> RateResolution:
        d = normalize(d)
        settings = settings or self.policy_service.get_settings()
        if holidays is None:
            holidays = self.holiday_service.holidays_in_range(d, d) if settings.rate_rules.enabled else []
        return resolve_rate(base_rate_cents, d, meal_type, settings, holidays, user_count)

    def base_rate_for(self, d: date, meal_type: str, settings: Optional[PolicySettings] = None) -> int:
        """基础价：包含该日期的月份设置，否则全局默认费率"""
        month = self.months.find_containing(d)
        if month is not None:
            return month.rate_for(meal_type)
        settings = settings or self.policy_service.get_settings()
        return getattr(settings.default_rates, meal_type)

    def preview_rate(self, d: date, meal_type: str, user_count: Optional[int] = None) -> RateResolution:
        d = normalize(d)
        settings = self.policy_service.get_settings()
        return self.resolve(self.base_rate_for(d, meal_type, settings), d, meal_type,
                            user_count=user_count, settings=settings)
