"""
早餐事件仓储
"""

from datetime import date, datetime
from typing import List, Optional, Tuple

from .base import BaseRepository
from ..models.breakfast import Breakfast

BREAKFAST_COLUMNS = (
    "breakfast_id, date, total_cost_cents, description, submitted_by, "
    "is_reversed, reversed_at, reversed_by, reverse_reason, created_at"
)
PARTICIPANT_COLUMNS = "user_id, cost_cents, deducted, deducted_at, transaction_id"


class BreakfastRepository(BaseRepository):
    """breakfasts / breakfast_participants 表访问"""

    def get(self, breakfast_id: int) -> Optional[Breakfast]:
        row = self.db.fetch_dict(
            f"SELECT {BREAKFAST_COLUMNS} FROM breakfasts WHERE breakfast_id = ?", [breakfast_id]
        )
        if row is None:
            return None
        row["participants"] = self.db.fetch_dicts(
            f"SELECT {PARTICIPANT_COLUMNS} FROM breakfast_participants "
            "WHERE breakfast_id = ? ORDER BY user_id",
            [breakfast_id],
        )
        return Breakfast.model_validate(row)

    def get_by_date(self, d: date) -> Optional[Breakfast]:
        row = self.db.execute_one("SELECT breakfast_id FROM breakfasts WHERE date = ?", [d])
        return self.get(row[0]) if row else None

    def create(self, d: date, total_cost_cents: int, description: Optional[str],
               submitted_by: int, shares: List[Tuple[int, int]]) -> Breakfast:
        """写入事件及参与人分摊 (user_id, cost_cents)；调用方负责事务"""
        row = self.db.execute_one(
            "INSERT INTO breakfasts(date, total_cost_cents, description, submitted_by) "
            "VALUES (?, ?, ?, ?) RETURNING breakfast_id",
            [d, total_cost_cents, description, submitted_by],
        )
        breakfast_id = row[0]
        self._insert_participants(breakfast_id, shares)
        return self.get(breakfast_id)

    def _insert_participants(self, breakfast_id: int, shares: List[Tuple[int, int]]) -> None:
        for user_id, cost_cents in shares:
            self.db.execute(
                "INSERT INTO breakfast_participants(breakfast_id, user_id, cost_cents) VALUES (?, ?, ?)",
                [breakfast_id, user_id, cost_cents],
            )

    def update(self, breakfast_id: int, total_cost_cents: int, description: Optional[str],
               shares: List[Tuple[int, int]]) -> Breakfast:
        """覆盖总费用、说明和参与人分摊；调用方负责事务"""
        self.db.execute(
            "UPDATE breakfasts SET total_cost_cents = ?, description = ? WHERE breakfast_id = ?",
            [total_cost_cents, description, breakfast_id],
        )
        # 保留的参与人原地更新，避免同一事务内删除后重插同一主键
        existing = {
            r[0] for r in self.db.execute_query(
                "SELECT user_id FROM breakfast_participants WHERE breakfast_id = ?", [breakfast_id])
        }
        keep = {user_id for user_id, _ in shares}
        for user_id in existing - keep:
            self.db.execute(
                "DELETE FROM breakfast_participants WHERE breakfast_id = ? AND user_id = ?",
                [breakfast_id, user_id],
            )
        for user_id, cost_cents in shares:
            if user_id in existing:
                self.db.execute(
                    "UPDATE breakfast_participants SET cost_cents = ? WHERE breakfast_id = ? AND user_id = ?",
                    [cost_cents, breakfast_id, user_id],
                )
        self._insert_participants(breakfast_id, [s for s in shares if s[0] not in existing])
        return self.get(breakfast_id)

    def list_in_range(self, start: date, end: date) -> List[Breakfast]:
        rows = self.db.execute_query(
            "SELECT breakfast_id FROM breakfasts WHERE date BETWEEN ? AND ? ORDER BY date", [start, end]
        )
        return [self.get(r[0]) for r in rows]

    def mark_deducted(self, breakfast_id: int, user_id: int, transaction_id: int, at: datetime) -> bool:
        """标记参与人已扣费；已扣过时返回 False"""
        row = self.db.execute_one(
            """
            UPDATE breakfast_participants
            SET deducted = TRUE, deducted_at = ?, transaction_id = ?
            WHERE breakfast_id = ? AND user_id = ? AND NOT deducted
            RETURNING user_id
            """,
            [at, transaction_id, breakfast_id, user_id],
        )
        return row is not None

    def mark_reversed(self, breakfast_id: int, reversed_by: int, reason: str, at: datetime) -> bool:
        """标记早餐已冲正；已冲正过时返回 False"""
        row = self.db.execute_one(
            """
            UPDATE breakfasts
            SET is_reversed = TRUE, reversed_at = ?, reversed_by = ?, reverse_reason = ?
            WHERE breakfast_id = ? AND NOT is_reversed
            RETURNING breakfast_id
            """,
            [at, reversed_by, reason, breakfast_id],
        )
        return row is not None

    def delete(self, breakfast_id: int) -> None:
        self.db.execute("DELETE FROM breakfast_participants WHERE breakfast_id = ?", [breakfast_id])
        self.db.execute("DELETE FROM breakfasts WHERE breakfast_id = ?", [breakfast_id])

    def user_cost(self, user_id: int, start: date, end: date) -> Tuple[int, int]:
        """用户在区间内参与的早餐次数和分摊合计，已冲正的早餐不计"""
        row = self.db.execute_one(
            """
            SELECT COUNT(*), COALESCE(SUM(p.cost_cents), 0)
            FROM breakfast_participants p
            JOIN breakfasts b ON b.breakfast_id = p.breakfast_id
            WHERE p.user_id = ? AND b.date BETWEEN ? AND ? AND NOT b.is_reversed
            """,
            [user_id, start, end],
        )
        return int(row[0]), int(row[1])
