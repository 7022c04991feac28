"""
餐次资格引擎
根据手动记录、节假日和全局策略推导某用户某日某餐的有效状态，并判断是否允许切换

判定顺序：
1. 存在记录时以记录为准（手动设置的记录 source=manual）
2. 否则按周末策略、节假日策略判断是否默认关闭
3. 未关闭时取默认用餐状态

切换权限：
- 系统管理员（admin 及以上）不受限制，已结账月份也可修改
- 已结账月份对普通用户和管理员（manager）关闭
- 普通用户只能改自己的餐次，过去日期不可改，当天需在截止时间之前
- 管理员（manager）只能改当前账期内的日期
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from ..core.clock import Clock, SystemClock
from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import (
    BaseApplicationError,
    NotFoundError,
    PermissionDeniedError,
    PolicyError,
    ValidationError,
)
from ..core.security import require_role, require_self_or_manager
from ..config.settings import settings as app_settings
from ..models.audit import AuditPage
from ..models.holiday import Holiday
from ..models.meal import (
    BulkResult,
    DailyRoster,
    DefaultOffResult,
    EffectiveStatus,
    MealRecord,
    MealType,
    RosterEntry,
    SkippedDate,
    StatusSource,
    TogglePermission,
)
from ..models.policy import PolicySettings
from ..models.user import Actor, Role
from ..repositories import AuditRepository, MealRepository, MonthRepository, UserRepository
from ..utils.calendar import (
    is_even_saturday,
    is_odd_saturday,
    iter_dates,
    month_bounds,
    normalize,
    validate_range,
    weekday_sun0,
)
from .holiday_service import HolidayService
from .policy_service import PolicyService

logger = logging.getLogger(__name__)


def is_default_meal_off(d: date, holidays: List[Holiday], settings: PolicySettings) -> DefaultOffResult:
    """判断某天是否默认关闭，并给出原因（weekend / holiday:<名称>）"""
    weekend = settings.weekend_policy
    weekday = weekday_sun0(d)
    if weekday in weekend.off_weekdays:
        return DefaultOffResult(is_off=True, reason="weekend")
    if weekend.odd_saturday_off and is_odd_saturday(d):
        return DefaultOffResult(is_off=True, reason="weekend")
    if weekend.even_saturday_off and is_even_saturday(d):
        return DefaultOffResult(is_off=True, reason="weekend")

    policy = settings.holiday_policy
    if policy.enabled:
        for h in holidays:
            if h.matches(d) and policy.suppresses(h.type):
                return DefaultOffResult(is_off=True, reason=f"holiday:{h.name}")
    return DefaultOffResult(is_off=False)


def effective_status(d: date, meal_type: str, record: Optional[MealRecord],
                     holidays: List[Holiday], settings: PolicySettings) -> EffectiveStatus:
    """有效状态；没有记录时只由日期、节假日和策略决定"""
    meal_type = MealType(meal_type)
    if record is not None:
        return EffectiveStatus(
            date=d,
            meal_type=meal_type,
            is_on=record.is_on,
            count=record.count,
            source=StatusSource.MANUAL if record.is_manually_set else StatusSource.DEFAULT,
            reason="manual" if record.is_manually_set else "materialized",
        )
    off = is_default_meal_off(d, holidays, settings)
    if off.is_off:
        return EffectiveStatus(date=d, meal_type=meal_type, is_on=False, count=0,
                               source=StatusSource.DEFAULT, reason=off.reason)
    is_on = getattr(settings.default_meal_status, meal_type.value)
    return EffectiveStatus(
        date=d,
        meal_type=meal_type,
        is_on=is_on,
        count=1 if is_on else 0,
        source=StatusSource.DEFAULT,
        reason=None if is_on else "default_off",
    )


class EligibilityService:
    """餐次资格服务"""

    def __init__(self, policy_service: PolicyService, holiday_service: HolidayService,
                 db: Optional[DatabaseManager] = None,
                 meals: Optional[MealRepository] = None,
                 months: Optional[MonthRepository] = None,
                 users: Optional[UserRepository] = None,
                 audit: Optional[AuditRepository] = None,
                 clock: Optional[Clock] = None,
                 max_range_days: Optional[int] = None):
        self.db = db or db_manager
        self.policy_service = policy_service
        self.holiday_service = holiday_service
        self.meals = meals or MealRepository(self.db)
        self.months = months or MonthRepository(self.db)
        self.users = users or UserRepository(self.db)
        self.audit = audit or AuditRepository(self.db)
        self.clock = clock or SystemClock()
        self.max_range_days = max_range_days or app_settings.max_range_days

    # ---- 查询 ----

    def get_status(self, user_id: int, d: date, meal_type: str) -> EffectiveStatus:
        d = normalize(d)
        self._require_user(user_id)
        record = self.meals.get(user_id, d, MealType(meal_type).value)
        return effective_status(d, meal_type, record, self.holiday_service.holidays_in_range(d, d),
                                self.policy_service.get_settings())

    def statuses(self, user_id: int, start: date, end: date,
                 meal_type: str) -> List[EffectiveStatus]:
        """区间内逐日有效状态（调用方负责限制区间长度）"""
        start, end = normalize(start), normalize(end)
        meal_type = MealType(meal_type).value
        settings = self.policy_service.get_settings()
        holidays = self.holiday_service.holidays_in_range(start, end)
        records = self.meals.index_for_user(user_id, start, end, meal_type)
        return [
            effective_status(d, meal_type, records.get((d, meal_type)), holidays, settings)
            for d in iter_dates(start, end)
        ]

    def get_calendar(self, user_id: int, start: date, end: date) -> Dict[str, List[EffectiveStatus]]:
        self._require_user(user_id)
        start, end = validate_range(start, end, self.max_range_days)
        return {mt.value: self.statuses(user_id, start, end, mt.value) for mt in MealType}

    def default_off(self, d: date) -> DefaultOffResult:
        d = normalize(d)
        return is_default_meal_off(d, self.holiday_service.holidays_in_range(d, d),
                                   self.policy_service.get_settings())

    def daily_roster(self, actor: Actor, d: date, meal_type: str) -> DailyRoster:
        """某日某餐所有在用用户的有效状态和总份数"""
        require_role(actor, Role.MANAGER)
        d = normalize(d)
        meal_type = MealType(meal_type)
        settings = self.policy_service.get_settings()
        holidays = self.holiday_service.holidays_in_range(d, d)
        records = self.meals.list_for_date(d, meal_type.value)
        entries = []
        for user in self.users.list_active():
            status = effective_status(d, meal_type, records.get(user.id), holidays, settings)
            entries.append(RosterEntry(user_id=user.id, name=user.name, is_on=status.is_on,
                                       count=status.count, source=status.source))
        total = sum(e.count for e in entries if e.is_on)
        return DailyRoster(date=d, meal_type=meal_type, entries=entries, total_count=total)

    def audit_log(self, actor: Actor, user_id: Optional[int] = None,
                  start: Optional[date] = None, end: Optional[date] = None,
                  meal_type: Optional[str] = None, limit: int = 50, offset: int = 0) -> AuditPage:
        """餐次变更记录；普通用户只能查看自己的，不指定用户时默认查看自己的"""
        if user_id is None and not actor.is_manager:
            user_id = actor.user_id
        if user_id is not None:
            require_self_or_manager(actor, user_id)
        if limit < 1 or limit > 500 or offset < 0:
            raise ValidationError("分页参数无效", {"limit": limit, "offset": offset})
        if (start is None) != (end is None):
            raise ValidationError("起止日期需同时提供")
        if start is not None:
            start, end = normalize(start), normalize(end)
        meal_type = MealType(meal_type).value if meal_type else None
        items, total = self.audit.meal_changes(user_id, start, end, meal_type, limit, offset)
        return AuditPage(items=items, total=total, limit=limit, offset=offset)

    # ---- 权限 ----

    def current_window(self):
        """当前账期窗口：包含今天的月份设置，否则今天所在的自然月"""
        today = self.clock.today()
        month = self.months.find_containing(today)
        if month is not None:
            return month.start_date, month.end_date
        return month_bounds(today.year, today.month)

    def is_month_finalized(self, d: date) -> bool:
        month = self.months.find_containing(d) or self.months.get(d.year, d.month)
        return bool(month and month.is_finalized)

    def can_toggle(self, actor: Actor, target_user_id: int, d: date, meal_type: str,
                   settings: Optional[PolicySettings] = None) -> TogglePermission:
        d = normalize(d)
        meal_type = MealType(meal_type)
        if actor.is_admin:
            return TogglePermission(can_toggle=True)
        if not actor.is_manager and target_user_id != actor.user_id:
            return TogglePermission(can_toggle=False, reason="unauthorized",
                                    message="不能修改其他用户的餐次")
        if self.is_month_finalized(d):
            return TogglePermission(can_toggle=False, reason="month_finalized",
                                    message="该月份已结账")
        if not actor.is_manager:
            today = self.clock.today()
            if d < today:
                return TogglePermission(can_toggle=False, reason="past_date",
                                        message="不能修改过去的日期")
            if d == today:
                settings = settings or self.policy_service.get_settings()
                cutoff = getattr(settings.cutoff_times, meal_type.value)
                if self.clock.now().hour >= cutoff:
                    return TogglePermission(can_toggle=False, reason="cutoff_passed",
                                            message=f"已过截止时间 {cutoff}:00")
            return TogglePermission(can_toggle=True)
        start, end = self.current_window()
        if not start <= d <= end:
            return TogglePermission(can_toggle=False, reason="not_current_month",
                                    message="只能修改当前账期内的日期")
        return TogglePermission(can_toggle=True)

    def _check_toggle(self, actor: Actor, user_id: int, d: date, meal_type: str):
        permission = self.can_toggle(actor, user_id, d, meal_type)
        if permission.can_toggle:
            return
        if permission.reason == "unauthorized":
            raise PermissionDeniedError(permission.message)
        raise PolicyError(permission.reason, permission.message,
                          {"date": d.isoformat(), "meal_type": MealType(meal_type).value})

    def _require_user(self, user_id: int):
        if not self.users.exists(user_id):
            raise NotFoundError("用户", user_id)

    # ---- 写入 ----

    def _write_manual(self, actor: Actor, user_id: int, d: date, meal_type: str, is_on: bool,
                      count: int, notes: Optional[str], action: str) -> MealRecord:
        """写入手动记录并记审计；值未变化也会写入"""
        with self.db.transaction():
            before = self.meals.get(user_id, d, meal_type)
            record = self.meals.upsert_manual(user_id, d, meal_type, is_on, count, actor.user_id, notes)
            self.audit.record(
                "meal", f"{user_id}:{d.isoformat()}:{meal_type}", action, actor.user_id,
                user_id=user_id,
                before=before.model_dump(mode="json") if before else None,
                after=record.model_dump(mode="json"),
            )
        return record

    def toggle(self, actor: Actor, user_id: int, d: date, meal_type: str, is_on: bool,
               notes: Optional[str] = None) -> MealRecord:
        d = normalize(d)
        meal_type = MealType(meal_type).value
        self._require_user(user_id)
        self._check_toggle(actor, user_id, d, meal_type)
        return self._write_manual(actor, user_id, d, meal_type, is_on, 1 if is_on else 0,
                                  notes, "toggle")

    def set_count(self, actor: Actor, user_id: int, d: date, meal_type: str, count: int,
                  notes: Optional[str] = None) -> MealRecord:
        """管理员设置份数，count 为 0 表示关闭"""
        require_role(actor, Role.MANAGER)
        if count < 0:
            raise ValidationError("份数不能为负数", {"count": count})
        d = normalize(d)
        meal_type = MealType(meal_type).value
        self._require_user(user_id)
        self._check_toggle(actor, user_id, d, meal_type)
        return self._write_manual(actor, user_id, d, meal_type, count > 0, count, notes, "set_count")

    def bulk_toggle(self, actor: Actor, user_id: int, start: date, end: date,
                    meal_type: str, is_on: bool) -> BulkResult:
        """逐日切换，每天独立成功或失败"""
        start, end = validate_range(start, end, self.max_range_days)
        meal_type = MealType(meal_type).value
        self._require_user(user_id)
        result = BulkResult()
        settings = self.policy_service.get_settings()
        for d in iter_dates(start, end):
            permission = self.can_toggle(actor, user_id, d, meal_type, settings)
            if not permission.can_toggle:
                result.skipped.append(SkippedDate(date=d, reason=permission.reason,
                                                  message=permission.message))
                continue
            try:
                self._write_manual(actor, user_id, d, meal_type, is_on, 1 if is_on else 0,
                                   None, "bulk_toggle")
            except BaseApplicationError as e:
                logger.warning("bulk toggle failed for user %s on %s: %s", user_id, d, e.message)
                result.skipped.append(SkippedDate(date=d, reason=e.error_code, message=e.message))
                continue
            result.applied.append(d)
        return result
