"""
用户与身份相关数据模型
核心逻辑不做认证，只根据调用方提供的身份上下文（Actor）做角色授权
"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum
from .base import BaseEntity, TimestampMixin


class Role(str, Enum):
    """角色枚举（按权限从低到高）"""
    USER = "user"
    MANAGER = "manager"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def at_least(self, other: "Role") -> bool:
        return self.rank >= other.rank


_ROLE_RANK = {
    Role.USER: 0,
    Role.MANAGER: 1,
    Role.ADMIN: 2,
    Role.SUPERADMIN: 3,
}


class Actor(BaseModel):
    """调用方身份上下文"""
    user_id: int = Field(..., description="操作者用户ID")
    role: Role = Field(Role.USER, description="操作者角色")

    @property
    def is_manager(self) -> bool:
        return self.role.at_least(Role.MANAGER)

    @property
    def is_admin(self) -> bool:
        return self.role.at_least(Role.ADMIN)

    @property
    def is_superadmin(self) -> bool:
        return self.role == Role.SUPERADMIN


class UserCreate(BaseModel):
    """用户创建模型"""
    name: str = Field(..., min_length=1, max_length=100, description="姓名")
    email: Optional[str] = Field(None, description="邮箱")
    role: Role = Field(Role.USER, description="角色")


class User(BaseEntity, TimestampMixin):
    """用户完整模型"""
    id: int = Field(..., description="用户ID")
    name: str = Field(..., description="姓名")
    email: Optional[str] = Field(None, description="邮箱")
    role: Role = Field(Role.USER, description="角色")
    is_active: bool = Field(True, description="是否启用")
