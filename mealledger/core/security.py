"""
身份上下文和角色校验
核心逻辑不做认证：调用方通过请求头传入用户ID和角色，这里只负责授权判断
"""

from typing import Optional

from fastapi import Header

from .exceptions import PermissionDeniedError, ValidationError
from ..models.user import Actor, Role

ROLE_LABELS = {
    Role.MANAGER: "管理员",
    Role.ADMIN: "系统管理员",
    Role.SUPERADMIN: "超级管理员",
}


def require_role(actor: Actor, role: Role, message: Optional[str] = None) -> Actor:
    """角色不低于 role 时返回 actor，否则抛出权限异常"""
    if not actor.role.at_least(role):
        raise PermissionDeniedError(
            message or f"需要{ROLE_LABELS.get(role, role.value)}权限",
            required_role=role.value,
        )
    return actor


def require_self_or_manager(actor: Actor, user_id: int) -> Actor:
    """普通用户只能访问自己的数据"""
    if actor.user_id != user_id and not actor.is_manager:
        raise PermissionDeniedError("只能查看自己的数据", required_role=Role.MANAGER.value)
    return actor


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    """从请求头提取调用方身份（X-User-Id / X-User-Role）"""
    if not x_user_id:
        raise PermissionDeniedError("缺少调用方身份")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise ValidationError("X-User-Id 必须为整数", {"value": x_user_id})
    try:
        role = Role((x_user_role or Role.USER.value).strip().lower())
    except ValueError:
        raise ValidationError(f"未知角色: {x_user_role}", {"value": x_user_role})
    return Actor(user_id=user_id, role=role)
