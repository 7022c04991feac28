"""
用户服务
维护参与用餐和记账的用户名单；身份认证由调用方负责
"""

from typing import List, Optional

from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import NotFoundError
from ..core.security import require_role
from ..models.ledger import BalanceType
from ..models.user import Actor, Role, User, UserCreate
from ..repositories import AuditRepository, LedgerRepository, UserRepository


class UserService:
    """用户服务"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 users: Optional[UserRepository] = None,
                 ledger: Optional[LedgerRepository] = None,
                 audit: Optional[AuditRepository] = None):
        self.db = db or db_manager
        self.users = users or UserRepository(self.db)
        self.ledger = ledger or LedgerRepository(self.db)
        self.audit = audit or AuditRepository(self.db)

    def get_user(self, user_id: int) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError("用户", user_id)
        return user

    def list_users(self) -> List[User]:
        return self.users.list_active()

    def create_user(self, data: UserCreate, actor: Actor) -> User:
        """创建用户并初始化三种余额（均为0）"""
        require_role(actor, Role.ADMIN)
        with self.db.transaction():
            user = self.users.create(data)
            for bt in BalanceType:
                self.ledger.ensure_balance(user.id, bt.value)
            self.audit.record("user", user.id, "create", actor.user_id, user_id=user.id,
                              after=user.model_dump(mode="json"))
        return user

    def set_active(self, user_id: int, is_active: bool, actor: Actor) -> User:
        """停用的用户不再出现在名单和重算中；余额和流水保留，结转照常处理"""
        require_role(actor, Role.ADMIN)
        with self.db.transaction():
            before = self.get_user(user_id)
            self.users.set_active(user_id, is_active)
            after = self.get_user(user_id)
            self.audit.record("user", user_id, "activate" if is_active else "deactivate",
                              actor.user_id, user_id=user_id,
                              before=before.model_dump(mode="json"),
                              after=after.model_dump(mode="json"))
        return after
