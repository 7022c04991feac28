"""
全局策略仓储
策略文档以 JSON 文本存储在 policy_settings 表的单行中
"""

from typing import Any, Dict, Optional

from .base import BaseRepository, from_json, to_json

GLOBAL_KEY = "global"


class PolicyRepository(BaseRepository):
    """policy_settings 表访问"""

    def get(self, key: str = GLOBAL_KEY) -> Optional[Dict[str, Any]]:
        row = self.db.fetch_dict(
            "SELECT settings_key, version, document, modified_by, updated_at "
            "FROM policy_settings WHERE settings_key = ?",
            [key],
        )
        if row is None:
            return None
        row["document"] = from_json(row["document"])
        return row

    def create_if_absent(self, document: Dict[str, Any], key: str = GLOBAL_KEY) -> None:
        """不存在时写入默认文档；并发创建时只有一行生效"""
        self.db.execute(
            "INSERT INTO policy_settings(settings_key, version, document) VALUES (?, 1, ?) "
            "ON CONFLICT (settings_key) DO NOTHING",
            [key, to_json(document)],
        )

    def save(self, document: Dict[str, Any], expected_version: int,
             modified_by: Optional[int], key: str = GLOBAL_KEY) -> Optional[int]:
        """按版本号条件更新，返回新版本号；版本不匹配时返回 None"""
        row = self.db.execute_one(
            """
            UPDATE policy_settings
            SET document = ?, version = version + 1, modified_by = ?, updated_at = now()
            WHERE settings_key = ? AND version = ?
            RETURNING version
            """,
            [to_json(document), modified_by, key, expected_version],
        )
        return row[0] if row else None
