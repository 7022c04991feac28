"""
审计日志仓储
只追加；按 (entity_type, entity_id) 或用户查询
"""

from datetime import date
from typing import Any, List, Optional, Tuple

from .base import BaseRepository, from_json, to_json
from ..models.audit import AuditEntry

AUDIT_COLUMNS = (
    "log_id, entity_type, entity_id, user_id, actor_id, action, "
    "before_json, after_json, reason, created_at"
)


class AuditRepository(BaseRepository):
    """audit_logs 表访问"""

    def record(self, entity_type: str, entity_id: Any, action: str, actor_id: Optional[int],
               user_id: Optional[int] = None, before: Any = None, after: Any = None,
               reason: Optional[str] = None) -> int:
        row = self.db.execute_one(
            """
            INSERT INTO audit_logs(entity_type, entity_id, user_id, actor_id, action,
                                   before_json, after_json, reason)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING log_id
            """,
            [entity_type, str(entity_id), user_id, actor_id, action,
             to_json(before), to_json(after), reason],
        )
        return row[0]

    def _entries(self, where: str, params: list, limit: int, offset: int = 0,
                 newest_first: bool = False) -> List[AuditEntry]:
        order = "log_id DESC" if newest_first else "log_id"
        rows = self.db.fetch_dicts(
            f"SELECT {AUDIT_COLUMNS} FROM audit_logs WHERE {where} ORDER BY {order} LIMIT ? OFFSET ?",
            params + [limit, offset],
        )
        entries = []
        for r in rows:
            r["before"] = from_json(r.pop("before_json"))
            r["after"] = from_json(r.pop("after_json"))
            entries.append(AuditEntry.model_validate(r))
        return entries

    def for_entity(self, entity_type: str, entity_id: Any, action: Optional[str] = None,
                   limit: int = 500) -> List[AuditEntry]:
        where = "entity_type = ? AND entity_id = ?"
        params = [entity_type, str(entity_id)]
        if action:
            where += " AND action = ?"
            params.append(action)
        return self._entries(where, params, limit)

    def meal_changes(self, user_id: Optional[int] = None, start: Optional[date] = None,
                     end: Optional[date] = None, meal_type: Optional[str] = None,
                     limit: int = 50, offset: int = 0) -> Tuple[List[AuditEntry], int]:
        """
        餐次变更记录，按时间倒序，附总数
        餐次审计的 entity_id 形如 user_id:YYYY-MM-DD:meal_type
        """
        where = "entity_type = 'meal'"
        params: list = []
        if user_id is not None:
            where += " AND user_id = ?"
            params.append(user_id)
        if start is not None and end is not None:
            where += " AND split_part(entity_id, ':', 2) BETWEEN ? AND ?"
            params += [start.isoformat(), end.isoformat()]
        if meal_type:
            where += " AND split_part(entity_id, ':', 3) = ?"
            params.append(meal_type)
        return self._page(where, params, limit, offset)

    def _page(self, where: str, params: list, limit: int, offset: int) -> Tuple[List[AuditEntry], int]:
        total = self.db.execute_one(f"SELECT COUNT(*) FROM audit_logs WHERE {where}", params)[0]
        return self._entries(where, params, limit, offset, newest_first=True), int(total)
