"""
节假日仓储
"""

from datetime import date
from typing import Any, Dict, List, Optional

from .base import BaseRepository
from ..models.holiday import Holiday, HolidayCreate

HOLIDAY_COLUMNS = (
    "holiday_id, date, name, local_name, type, is_recurring, recurring_month, "
    "recurring_day, is_active, added_by, created_at"
)


class HolidayRepository(BaseRepository):
    """holidays 表访问"""

    def get(self, holiday_id: int) -> Optional[Holiday]:
        row = self.db.fetch_dict(
            f"SELECT {HOLIDAY_COLUMNS} FROM holidays WHERE holiday_id = ?", [holiday_id]
        )
        return Holiday.model_validate(row) if row else None

    def create(self, data: HolidayCreate, added_by: Optional[int]) -> Holiday:
        row = self.db.execute_one(
            """
            INSERT INTO holidays(date, name, local_name, type, is_recurring,
                                 recurring_month, recurring_day, added_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING holiday_id
            """,
            [
                data.date, data.name, data.local_name, data.type.value, data.is_recurring,
                data.date.month if data.is_recurring else None,
                data.date.day if data.is_recurring else None,
                added_by,
            ],
        )
        return self.get(row[0])

    def update(self, holiday_id: int, fields: Dict[str, Any]) -> Optional[Holiday]:
        if not fields:
            return self.get(holiday_id)
        assignments = ", ".join(f"{column} = ?" for column in fields)
        row = self.db.execute_one(
            f"UPDATE holidays SET {assignments} WHERE holiday_id = ? RETURNING holiday_id",
            list(fields.values()) + [holiday_id],
        )
        return self.get(row[0]) if row else None

    def delete(self, holiday_id: int) -> bool:
        rows = self.db.execute_query(
            "DELETE FROM holidays WHERE holiday_id = ? RETURNING holiday_id", [holiday_id]
        )
        return bool(rows)

    def list_candidates(self, start: date, end: date, active_only: bool = True) -> List[Holiday]:
        """区间内的固定节假日加上全部循环节假日（循环节假日由调用方展开）"""
        query = (
            f"SELECT {HOLIDAY_COLUMNS} FROM holidays "
            "WHERE (is_recurring OR date BETWEEN ? AND ?)"
        )
        if active_only:
            query += " AND is_active"
        rows = self.db.fetch_dicts(query + " ORDER BY date, holiday_id", [start, end])
        return [Holiday.model_validate(r) for r in rows]

    def list_all(self, year: Optional[int] = None) -> List[Holiday]:
        query = f"SELECT {HOLIDAY_COLUMNS} FROM holidays"
        params = []
        if year is not None:
            query += " WHERE is_recurring OR year(date) = ?"
            params.append(year)
        rows = self.db.fetch_dicts(query + " ORDER BY date, holiday_id", params)
        return [Holiday.model_validate(r) for r in rows]
