"""
餐次记录仓储
写操作都是以 (user_id, date, meal_type) 为键的单条原子语句
"""

from datetime import date
from typing import Dict, List, Optional, Tuple

from .base import BaseRepository
from ..models.meal import MealRecord

MEAL_COLUMNS = (
    "meal_id, user_id, date, meal_type, is_on, count, is_manually_set, "
    "modified_by, notes, created_at, updated_at"
)


class MealRepository(BaseRepository):
    """meals 表访问"""

    def get(self, user_id: int, d: date, meal_type: str) -> Optional[MealRecord]:
        row = self.db.fetch_dict(
            f"SELECT {MEAL_COLUMNS} FROM meals WHERE user_id = ? AND date = ? AND meal_type = ?",
            [user_id, d, meal_type],
        )
        return MealRecord.model_validate(row) if row else None

    def list_for_user(self, user_id: int, start: date, end: date,
                      meal_type: Optional[str] = None) -> List[MealRecord]:
        query = f"SELECT {MEAL_COLUMNS} FROM meals WHERE user_id = ? AND date BETWEEN ? AND ?"
        params = [user_id, start, end]
        if meal_type:
            query += " AND meal_type = ?"
            params.append(meal_type)
        rows = self.db.fetch_dicts(query + " ORDER BY date, meal_type", params)
        return [MealRecord.model_validate(r) for r in rows]

    def index_for_user(self, user_id: int, start: date, end: date,
                       meal_type: Optional[str] = None) -> Dict[Tuple[date, str], MealRecord]:
        """按 (date, meal_type) 索引的记录"""
        return {
            (m.date, m.meal_type.value): m
            for m in self.list_for_user(user_id, start, end, meal_type)
        }

    def list_for_date(self, d: date, meal_type: str) -> Dict[int, MealRecord]:
        rows = self.db.fetch_dicts(
            f"SELECT {MEAL_COLUMNS} FROM meals WHERE date = ? AND meal_type = ?",
            [d, meal_type],
        )
        return {r["user_id"]: MealRecord.model_validate(r) for r in rows}

    def upsert_manual(self, user_id: int, d: date, meal_type: str, is_on: bool,
                      count: int, modified_by: int, notes: Optional[str] = None) -> MealRecord:
        """写入手动记录；已存在时覆盖并标记为手动"""
        self.db.execute(
            """
            INSERT INTO meals(user_id, date, meal_type, is_on, count, is_manually_set, modified_by, notes)
            VALUES (?, ?, ?, ?, ?, TRUE, ?, ?)
            ON CONFLICT (user_id, date, meal_type) DO UPDATE SET
                is_on = excluded.is_on,
                count = excluded.count,
                is_manually_set = TRUE,
                modified_by = excluded.modified_by,
                notes = COALESCE(excluded.notes, meals.notes),
                updated_at = now()
            """,
            [user_id, d, meal_type, is_on, count, modified_by, notes],
        )
        return self.get(user_id, d, meal_type)

    def upsert_default(self, user_id: int, d: date, meal_type: str,
                       is_on: bool, count: int) -> None:
        """物化默认状态；手动记录不受影响"""
        self.db.execute(
            """
            INSERT INTO meals(user_id, date, meal_type, is_on, count, is_manually_set)
            VALUES (?, ?, ?, ?, ?, FALSE)
            ON CONFLICT (user_id, date, meal_type) DO UPDATE SET
                is_on = excluded.is_on,
                count = excluded.count,
                updated_at = now()
            WHERE NOT meals.is_manually_set
            """,
            [user_id, d, meal_type, is_on, count],
        )

    def delete_manual_in_range(self, start: date, end: date, user_id: Optional[int] = None,
                               meal_type: Optional[str] = None) -> int:
        query = "DELETE FROM meals WHERE is_manually_set AND date BETWEEN ? AND ?"
        params = [start, end]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if meal_type:
            query += " AND meal_type = ?"
            params.append(meal_type)
        rows = self.db.execute_query(query + " RETURNING meal_id", params)
        return len(rows)

    def delete(self, user_id: int, d: date, meal_type: str) -> bool:
        rows = self.db.execute_query(
            "DELETE FROM meals WHERE user_id = ? AND date = ? AND meal_type = ? RETURNING meal_id",
            [user_id, d, meal_type],
        )
        return bool(rows)
