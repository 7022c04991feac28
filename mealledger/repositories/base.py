"""
仓储基类
每个实体一个仓储，只暴露核心逻辑需要的操作；SQL 直接写在仓储中
"""

import json
from typing import Any, Optional

from ..core.database import DatabaseManager, db_manager


class BaseRepository:
    """持有数据库管理器的仓储基类"""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or db_manager


def to_json(value: Any) -> Optional[str]:
    """序列化为 JSON 文本（日期等对象转为字符串）"""
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


def from_json(text: Optional[str]) -> Any:
    if text is None:
        return None
    return json.loads(text)
