"""
审计日志数据模型
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, List, Optional


class AuditEntry(BaseModel):
    """一条审计记录，按 (entity_type, entity_id) 查询"""
    log_id: int
    entity_type: str
    entity_id: str
    user_id: Optional[int] = None
    actor_id: Optional[int] = None
    action: str
    before: Optional[Any] = None
    after: Optional[Any] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None



class AuditPage(BaseModel):
    """审计记录分页"""
    items: List[AuditEntry] = Field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0
