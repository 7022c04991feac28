"""
用户仓储
"""

from typing import List, Optional

from .base import BaseRepository
from ..models.user import User, UserCreate

USER_COLUMNS = "id, name, email, role, is_active, created_at"


class UserRepository(BaseRepository):
    """用户表访问"""

    def get(self, user_id: int) -> Optional[User]:
        row = self.db.fetch_dict(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", [user_id])
        return User.model_validate(row) if row else None

    def exists(self, user_id: int) -> bool:
        return self.db.execute_one("SELECT 1 FROM users WHERE id = ?", [user_id]) is not None

    def create(self, data: UserCreate) -> User:
        row = self.db.execute_one(
            "INSERT INTO users(name, email, role) VALUES (?, ?, ?) RETURNING id",
            [data.name, data.email, data.role.value],
        )
        return self.get(row[0])

    def list_active(self) -> List[User]:
        rows = self.db.fetch_dicts(
            f"SELECT {USER_COLUMNS} FROM users WHERE is_active ORDER BY id"
        )
        return [User.model_validate(r) for r in rows]

    def list_ids(self) -> List[int]:
        return [r[0] for r in self.db.execute_query("SELECT id FROM users ORDER BY id")]

    def set_active(self, user_id: int, is_active: bool) -> bool:
        row = self.db.execute_one(
            "UPDATE users SET is_active = ? WHERE id = ? RETURNING id", [is_active, user_id]
        )
        return row is not None
