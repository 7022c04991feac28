"""
月份设置仓储
生命周期标记的变更都是带前置条件的单条 UPDATE，条件不满足时返回 None
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from .base import BaseRepository
from ..models.month import PersistedMonth

MONTH_COLUMNS = (
    "month_id, year, month, start_date, end_date, lunch_rate_cents, dinner_rate_cents, "
    "is_finalized, finalized_at, finalized_by, is_carried_forward, carried_forward_at, "
    "carried_forward_by, notes, created_by, modified_by, created_at"
)


class MonthRepository(BaseRepository):
    """month_settings 表访问"""

    def _one(self, where: str, params: list) -> Optional[PersistedMonth]:
        row = self.db.fetch_dict(f"SELECT {MONTH_COLUMNS} FROM month_settings WHERE {where}", params)
        return PersistedMonth.model_validate(row) if row else None

    def get(self, year: int, month: int) -> Optional[PersistedMonth]:
        return self._one("year = ? AND month = ?", [year, month])

    def find_containing(self, d: date) -> Optional[PersistedMonth]:
        """包含该日期的账期；窗口重叠时取最近开始的一个"""
        row = self.db.fetch_dict(
            f"SELECT {MONTH_COLUMNS} FROM month_settings "
            "WHERE ? BETWEEN start_date AND end_date ORDER BY start_date DESC LIMIT 1",
            [d],
        )
        return PersistedMonth.model_validate(row) if row else None

    def list_overlapping(self, start: date, end: date) -> List[PersistedMonth]:
        rows = self.db.fetch_dicts(
            f"SELECT {MONTH_COLUMNS} FROM month_settings "
            "WHERE start_date <= ? AND end_date >= ? ORDER BY start_date",
            [end, start],
        )
        return [PersistedMonth.model_validate(r) for r in rows]

    def list_months(self, year: Optional[int] = None) -> List[PersistedMonth]:
        query = f"SELECT {MONTH_COLUMNS} FROM month_settings"
        params = []
        if year is not None:
            query += " WHERE year = ?"
            params.append(year)
        rows = self.db.fetch_dicts(query + " ORDER BY year, month", params)
        return [PersistedMonth.model_validate(r) for r in rows]

    def create(self, year: int, month: int, start: date, end: date, lunch_rate_cents: int,
               dinner_rate_cents: int, notes: Optional[str], created_by: Optional[int]) -> PersistedMonth:
        self.db.execute(
            """
            INSERT INTO month_settings(year, month, start_date, end_date, lunch_rate_cents,
                                       dinner_rate_cents, notes, created_by, modified_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [year, month, start, end, lunch_rate_cents, dinner_rate_cents, notes, created_by, created_by],
        )
        return self.get(year, month)

    def update_open(self, year: int, month: int, fields: Dict[str, Any]) -> Optional[PersistedMonth]:
        """仅在未结账时更新"""
        return self._update(year, month, fields, "NOT is_finalized")

    def force_update(self, year: int, month: int, fields: Dict[str, Any]) -> Optional[PersistedMonth]:
        """无条件更新（超级管理员）"""
        return self._update(year, month, fields, "TRUE")

    def _update(self, year: int, month: int, fields: Dict[str, Any], condition: str) -> Optional[PersistedMonth]:
        assignments = ", ".join(f"{column} = ?" for column in fields)
        row = self.db.execute_one(
            f"UPDATE month_settings SET {assignments} "
            f"WHERE year = ? AND month = ? AND {condition} RETURNING month_id",
            list(fields.values()) + [year, month],
        )
        return self.get(year, month) if row else None

    def mark_finalized(self, year: int, month: int, actor_id: int, at: datetime) -> bool:
        row = self.db.execute_one(
            """
            UPDATE month_settings
            SET is_finalized = TRUE, finalized_at = ?, finalized_by = ?, modified_by = ?
            WHERE year = ? AND month = ? AND NOT is_finalized
            RETURNING month_id
            """,
            [at, actor_id, actor_id, year, month],
        )
        return row is not None

    def claim_carry_forward(self, year: int, month: int, actor_id: int, at: datetime) -> bool:
        """抢占结转标记；只有已结账且未结转的月份能成功一次"""
        row = self.db.execute_one(
            """
            UPDATE month_settings
            SET is_carried_forward = TRUE, carried_forward_at = ?, carried_forward_by = ?
            WHERE year = ? AND month = ? AND is_finalized AND NOT is_carried_forward
            RETURNING month_id
            """,
            [at, actor_id, year, month],
        )
        return row is not None
