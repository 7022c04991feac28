"""
早餐事件服务
早餐不按天切换，而是按事件记录总费用并在参与人之间平摊，
扣费时为每位参与人写一笔早餐余额扣费流水

扣费之前可以修改或删除；扣费之后只能整体冲正（退款并不再计费）
"""

import logging
from datetime import date
from typing import List, Optional, Tuple

from ..core.clock import Clock, SystemClock
from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import BaseApplicationError, NotFoundError, PolicyError, ValidationError
from ..core.security import require_role
from ..models.breakfast import (
    Breakfast,
    BreakfastCreate,
    BreakfastDeductionReport,
    BreakfastRefund,
    BreakfastReversalReport,
    BreakfastUpdate,
    DeductionFailure,
)
from ..models.ledger import BalanceType, TransactionType
from ..models.user import Actor, Role
from ..repositories import AuditRepository, BreakfastRepository, UserRepository
from ..utils.calendar import normalize
from .ledger_service import LedgerService

logger = logging.getLogger(__name__)


def split_cost(total_cents: int, participant_ids: List[int]) -> List[Tuple[int, int]]:
    """平均分摊到分，余下的分依次加给前面的参与人"""
    if not participant_ids:
        raise ValidationError("至少需要一位参与人")
    share, remainder = divmod(total_cents, len(participant_ids))
    return [
        (user_id, share + (1 if i < remainder else 0))
        for i, user_id in enumerate(participant_ids)
    ]


class BreakfastService:
    """早餐服务"""

    def __init__(self, ledger_service: LedgerService,
                 db: Optional[DatabaseManager] = None,
                 breakfasts: Optional[BreakfastRepository] = None,
                 users: Optional[UserRepository] = None,
                 audit: Optional[AuditRepository] = None,
                 clock: Optional[Clock] = None):
        self.db = db or db_manager
        self.ledger_service = ledger_service
        self.breakfasts = breakfasts or BreakfastRepository(self.db)
        self.users = users or UserRepository(self.db)
        self.audit = audit or AuditRepository(self.db)
        self.clock = clock or SystemClock()

    def get(self, breakfast_id: int) -> Breakfast:
        breakfast = self.breakfasts.get(breakfast_id)
        if breakfast is None:
            raise NotFoundError("早餐记录", breakfast_id)
        return breakfast

    def list_breakfasts(self, start: date, end: date) -> List[Breakfast]:
        return self.breakfasts.list_in_range(normalize(start), normalize(end))

    def create(self, actor: Actor, data: BreakfastCreate) -> Breakfast:
        """登记早餐事件（每天最多一条）"""
        require_role(actor, Role.MANAGER)
        shares = split_cost(data.total_cost_cents, data.participant_ids)
        with self.db.transaction():
            self._require_participants(data.participant_ids)
            if self.breakfasts.get_by_date(data.date) is not None:
                raise PolicyError("breakfast_exists", "该日期的早餐已登记", {"date": data.date.isoformat()})
            breakfast = self.breakfasts.create(data.date, data.total_cost_cents, data.description,
                                               actor.user_id, shares)
            self.audit.record("breakfast", breakfast.breakfast_id, "create", actor.user_id,
                              after=breakfast.model_dump(mode="json"))
        return breakfast

    def _require_participants(self, user_ids: List[int]):
        for user_id in user_ids:
            if not self.users.exists(user_id):
                raise NotFoundError("用户", user_id)

    @staticmethod
    def _check_not_deducted(breakfast: Breakfast, message: str):
        if any(p.deducted for p in breakfast.participants):
            raise PolicyError("already_deducted", message, {"breakfast_id": breakfast.breakfast_id})

    def update(self, actor: Actor, breakfast_id: int, data: BreakfastUpdate) -> Breakfast:
        """修改尚未扣费的早餐：按人指定费用，或重新平摊总费用"""
        require_role(actor, Role.MANAGER)
        with self.db.transaction():
            breakfast = self.get(breakfast_id)
            self._check_not_deducted(breakfast, "已有参与人扣费，不能修改")
            if data.participant_costs:
                shares = [(p.user_id, p.cost_cents) for p in data.participant_costs]
                total = sum(cost for _, cost in shares)
            else:
                total = (breakfast.total_cost_cents if data.total_cost_cents is None
                         else data.total_cost_cents)
                participant_ids = data.participant_ids or [p.user_id for p in breakfast.participants]
                shares = split_cost(total, participant_ids)
            self._require_participants([user_id for user_id, _ in shares])
            description = breakfast.description if data.description is None else data.description
            updated = self.breakfasts.update(breakfast_id, total, description, shares)
            self.audit.record("breakfast", breakfast_id, "update", actor.user_id,
                              before=breakfast.model_dump(mode="json"),
                              after=updated.model_dump(mode="json"))
        return updated

    def deduct(self, actor: Actor, breakfast_id: int) -> BreakfastDeductionReport:
        """为每位未扣费的参与人扣费；每人独立成功或失败"""
        require_role(actor, Role.MANAGER)
        breakfast = self.get(breakfast_id)
        if breakfast.is_reversed:
            raise PolicyError("already_reversed", "该早餐已冲正", {"breakfast_id": breakfast_id})
        report = BreakfastDeductionReport(breakfast_id=breakfast_id)
        for p in breakfast.participants:
            if p.deducted:
                report.already_deducted.append(p.user_id)
                continue
            try:
                with self.db.transaction():
                    if p.cost_cents > 0:
                        txn = self.ledger_service.apply_transaction(
                            actor, p.user_id, BalanceType.BREAKFAST, TransactionType.DEDUCTION,
                            p.cost_cents, f"早餐 {breakfast.date.isoformat()}",
                            reference_type="breakfast", reference_id=breakfast_id,
                        )
                        txn_id = txn.transaction_id
                    else:
                        txn_id = None
                    if not self.breakfasts.mark_deducted(breakfast_id, p.user_id, txn_id,
                                                         self.clock.local_now()):
                        raise PolicyError("already_deducted", "该参与人已扣费")
            except BaseApplicationError as e:
                logger.warning("breakfast %s deduction failed for user %s: %s",
                               breakfast_id, p.user_id, e.message)
                report.failed.append(DeductionFailure(user_id=p.user_id, reason=e.error_code,
                                                      message=e.message))
                continue
            report.deducted.append(p.user_id)
        with self.db.transaction():
            self.audit.record("breakfast", breakfast_id, "deduct", actor.user_id,
                              after=report.model_dump(mode="json"))
        return report

    def reverse(self, actor: Actor, breakfast_id: int, reason: str) -> BreakfastReversalReport:
        """
        冲正已扣费的早餐：为每位已扣费的参与人退回早餐余额，早餐此后不再计入费用

        整体在一个事务中完成，任何一笔退款失败（如余额冻结）都不会留下部分结果。
        扣费流水已在账本中单独冲正过的参与人不再重复退款。
        """
        require_role(actor, Role.MANAGER)
        if not reason or not reason.strip():
            raise ValidationError("冲正必须填写原因")
        report = BreakfastReversalReport(breakfast_id=breakfast_id, reason=reason)
        with self.db.transaction():
            breakfast = self.get(breakfast_id)
            if breakfast.is_reversed:
                raise PolicyError("already_reversed", "该早餐已冲正", {"breakfast_id": breakfast_id})
            if not any(p.deducted for p in breakfast.participants):
                raise PolicyError("not_deducted", "该早餐尚未扣费，可直接修改或删除",
                                  {"breakfast_id": breakfast_id})
            if not self.breakfasts.mark_reversed(breakfast_id, actor.user_id, reason,
                                                 self.clock.local_now()):
                raise PolicyError("already_reversed", "该早餐已冲正", {"breakfast_id": breakfast_id})
            for p in breakfast.participants:
                if not p.deducted or p.transaction_id is None:
                    continue
                if self.ledger_service.get_transaction(p.transaction_id).is_reversed:
                    report.already_refunded.append(p.user_id)
                    continue
                txn = self.ledger_service.apply_transaction(
                    actor, p.user_id, BalanceType.BREAKFAST, TransactionType.REFUND,
                    p.cost_cents, f"早餐退款 {breakfast.date.isoformat()} ({reason})",
                    reference_type="breakfast", reference_id=breakfast_id,
                )
                report.refunds.append(BreakfastRefund(user_id=p.user_id, amount_cents=p.cost_cents,
                                                      transaction_id=txn.transaction_id))
            self.audit.record("breakfast", breakfast_id, "reverse", actor.user_id,
                              before=breakfast.model_dump(mode="json"),
                              after=report.model_dump(mode="json"), reason=reason)
        logger.info("breakfast %s reversed by %s, %d refunds", breakfast_id, actor.user_id,
                    len(report.refunds))
        return report

    def delete(self, actor: Actor, breakfast_id: int) -> None:
        """删除尚未扣费的早餐事件"""
        require_role(actor, Role.MANAGER)
        with self.db.transaction():
            breakfast = self.get(breakfast_id)
            self._check_not_deducted(breakfast, "已有参与人扣费，不能删除，只能冲正")
            self.breakfasts.delete(breakfast_id)
            self.audit.record("breakfast", breakfast_id, "delete", actor.user_id,
                              before=breakfast.model_dump(mode="json"))

    def user_cost(self, user_id: int, start: date, end: date) -> Tuple[int, int]:
        """用户在区间内的早餐次数和分摊合计（不含已冲正的早餐）"""
        return self.breakfasts.user_cost(user_id, normalize(start), normalize(end))
