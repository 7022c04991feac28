"""
节假日目录服务
维护节假日（固定日期或按月/日循环），并回答“某天是否为节假日”
"""

import logging
from datetime import date
from typing import List, Optional, Tuple

from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import NotFoundError, ValidationError
from ..core.security import require_role
from ..models.holiday import Holiday, HolidayCreate, HolidayUpdate
from ..models.user import Actor, Role
from ..repositories import AuditRepository, HolidayRepository
from ..utils.calendar import normalize

logger = logging.getLogger(__name__)


class HolidayService:
    """节假日服务"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 holidays: Optional[HolidayRepository] = None,
                 audit: Optional[AuditRepository] = None):
        self.db = db or db_manager
        self.holidays = holidays or HolidayRepository(self.db)
        self.audit = audit or AuditRepository(self.db)

    def get(self, holiday_id: int) -> Holiday:
        holiday = self.holidays.get(holiday_id)
        if holiday is None:
            raise NotFoundError("节假日", holiday_id)
        return holiday

    def list_holidays(self, year: Optional[int] = None) -> List[Holiday]:
        return self.holidays.list_all(year)

    def holidays_in_range(self, start: date, end: date) -> List[Holiday]:
        """区间内生效的节假日（循环节假日只要在区间内有一次出现即包含）"""
        start, end = normalize(start), normalize(end)
        return [
            h for h in self.holidays.list_candidates(start, end)
            if any(True for _ in self._occurrences(h, start, end))
        ]

    def occurrences(self, start: date, end: date) -> List[Tuple[date, Holiday]]:
        """区间内按日期展开的节假日，循环节假日映射到各年份"""
        start, end = normalize(start), normalize(end)
        result = []
        for h in self.holidays.list_candidates(start, end):
            result.extend((d, h) for _, d in self._occurrences(h, start, end))
        result.sort(key=lambda item: (item[0], item[1].holiday_id))
        return result

    @staticmethod
    def _occurrences(holiday: Holiday, start: date, end: date):
        for year in range(start.year, end.year + 1):
            d = holiday.occurrence_in(year)
            if d is not None and start <= d <= end:
                yield year, d

    def holiday_on(self, d: date) -> Optional[Holiday]:
        d = normalize(d)
        for h in self.holidays.list_candidates(d, d):
            if h.matches(d):
                return h
        return None

    def add_holiday(self, data: HolidayCreate, actor: Actor) -> Holiday:
        require_role(actor, Role.ADMIN)
        with self.db.transaction():
            holiday = self.holidays.create(data, actor.user_id)
            self.audit.record("holiday", holiday.holiday_id, "create", actor.user_id,
                              after=holiday.model_dump(mode="json"))
        logger.info("holiday %s added on %s by %s", holiday.name, holiday.date, actor.user_id)
        return holiday

    def update_holiday(self, holiday_id: int, data: HolidayUpdate, actor: Actor) -> Holiday:
        require_role(actor, Role.ADMIN)
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("没有需要更新的字段")
        if "type" in fields and fields["type"] is not None:
            fields["type"] = fields["type"].value
        with self.db.transaction():
            before = self.get(holiday_id)
            recurring = fields.get("is_recurring", before.is_recurring)
            anchor = fields.get("date") or before.date
            if "is_recurring" in fields or "date" in fields:
                fields["recurring_month"] = anchor.month if recurring else None
                fields["recurring_day"] = anchor.day if recurring else None
            after = self.holidays.update(holiday_id, fields)
            self.audit.record("holiday", holiday_id, "update", actor.user_id,
                              before=before.model_dump(mode="json"),
                              after=after.model_dump(mode="json"))
        return after

    def deactivate_holiday(self, holiday_id: int, actor: Actor) -> Holiday:
        return self.update_holiday(holiday_id, HolidayUpdate(is_active=False), actor)

    def delete_holiday(self, holiday_id: int, actor: Actor) -> None:
        require_role(actor, Role.ADMIN)
        with self.db.transaction():
            before = self.get(holiday_id)
            self.holidays.delete(holiday_id)
            self.audit.record("holiday", holiday_id, "delete", actor.user_id,
                              before=before.model_dump(mode="json"))
