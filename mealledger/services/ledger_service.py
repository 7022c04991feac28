"""
账本服务
按用户和余额类型（早餐/午餐/晚餐）记录每一笔资金变动，维护缓存余额

主要功能：
- 充值、扣费、调整、退款记账
- 冲正（生成反向流水，原流水标记已冲正）
- 超级管理员更正流水（只把差额计入余额）
- 冻结/解冻余额
- 缓存余额与流水合计的核对和修复

不变式：
- 每笔流水创建时 new_balance = previous_balance + amount
- 缓存余额等于该类型全部流水金额之和
- 冲正流水本身不可再冲正，同一流水只能冲正一次
"""

import logging
from typing import Dict, List, Optional

from ..core.clock import Clock, SystemClock
from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import NotFoundError, PolicyError, ValidationError
from ..core.security import require_role, require_self_or_manager
from ..models.audit import AuditEntry
from ..models.ledger import (
    Balance,
    BalanceRecalculation,
    BalanceType,
    Transaction,
    TransactionPage,
    TransactionType,
)
from ..models.user import Actor, Role
from ..repositories import AuditRepository, LedgerRepository, UserRepository

logger = logging.getLogger(__name__)

POSITIVE_TYPES = (TransactionType.DEPOSIT, TransactionType.DEDUCTION, TransactionType.REFUND)


class LedgerService:
    """账本服务"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 ledger: Optional[LedgerRepository] = None,
                 users: Optional[UserRepository] = None,
                 audit: Optional[AuditRepository] = None,
                 clock: Optional[Clock] = None):
        self.db = db or db_manager
        self.ledger = ledger or LedgerRepository(self.db)
        self.users = users or UserRepository(self.db)
        self.audit = audit or AuditRepository(self.db)
        self.clock = clock or SystemClock()

    # ---- 内部记账 ----

    def _require_user(self, user_id: int):
        if not self.users.exists(user_id):
            raise NotFoundError("用户", user_id)

    def _post(self, user_id: int, balance_type: BalanceType, tx_type: TransactionType, delta: int,
              description: Optional[str], performed_by: Optional[int],
              reference_type: Optional[str] = None, reference_id: Optional[int] = None,
              original_transaction_id: Optional[int] = None) -> Transaction:
        """在当前事务中原子更新余额并写入流水"""
        self.ledger.ensure_balance(user_id, balance_type.value)
        new_balance = self.ledger.apply_delta(user_id, balance_type.value, delta)
        if new_balance is None:
            raise PolicyError("balance_frozen", "该余额已冻结，无法变动",
                              {"user_id": user_id, "balance_type": balance_type.value})
        return self.ledger.insert_transaction({
            "user_id": user_id,
            "type": tx_type.value,
            "balance_type": balance_type.value,
            "amount_cents": delta,
            "previous_balance_cents": new_balance - delta,
            "new_balance_cents": new_balance,
            "description": description,
            "reference_type": reference_type,
            "reference_id": reference_id,
            "performed_by": performed_by,
            "original_transaction_id": original_transaction_id,
            "created_at": self.clock.local_now(),
        })

    # ---- 记账 ----

    def apply_transaction(self, actor: Actor, user_id: int, balance_type: str, tx_type: str,
                          amount_cents: Optional[int] = None, description: Optional[str] = None,
                          target_cents: Optional[int] = None,
                          reference_type: Optional[str] = None,
                          reference_id: Optional[int] = None) -> Transaction:
        """
        记一笔账

        deposit / deduction / refund 传入正数金额，扣费由账本取负；
        adjustment 传入有符号差额 amount_cents 或目标余额 target_cents（二选一）；
        reversal 不能直接创建，只能通过 reverse_transaction 产生
        """
        require_role(actor, Role.MANAGER)
        tx_type = self._parse_type(tx_type)
        balance_type = self._parse_balance_type(balance_type)
        if tx_type == TransactionType.REVERSAL:
            raise ValidationError("冲正流水只能通过冲正操作产生")
        if tx_type in POSITIVE_TYPES:
            if target_cents is not None:
                raise ValidationError("只有调整可以指定目标余额")
            if not isinstance(amount_cents, int) or amount_cents <= 0:
                raise ValidationError("金额必须为正整数（分）", {"amount_cents": amount_cents})
        elif (amount_cents is None) == (target_cents is None):
            raise ValidationError("调整需要且只能提供差额或目标余额之一")

        with self.db.transaction():
            self._require_user(user_id)
            if tx_type == TransactionType.ADJUSTMENT and target_cents is not None:
                self.ledger.ensure_balance(user_id, balance_type.value)
                current = self.ledger.get_balance(user_id, balance_type.value)
                delta = target_cents - current.amount_cents
            elif tx_type == TransactionType.DEDUCTION:
                delta = -amount_cents
            else:
                delta = amount_cents
            txn = self._post(user_id, balance_type, tx_type, delta, description, actor.user_id,
                             reference_type, reference_id)
        logger.info("%s %s cents on user %s/%s by %s", tx_type.value, delta, user_id,
                    balance_type.value, actor.user_id)
        return txn

    def deposit(self, actor: Actor, user_id: int, balance_type: str, amount_cents: int,
                description: Optional[str] = None) -> Transaction:
        return self.apply_transaction(actor, user_id, balance_type, TransactionType.DEPOSIT,
                                      amount_cents, description)

    def deduct(self, actor: Actor, user_id: int, balance_type: str, amount_cents: int,
               description: Optional[str] = None) -> Transaction:
        return self.apply_transaction(actor, user_id, balance_type, TransactionType.DEDUCTION,
                                      amount_cents, description)

    def reverse_transaction(self, actor: Actor, transaction_id: int, reason: str) -> Transaction:
        """冲正：生成金额相反的 reversal 流水，原流水标记为已冲正"""
        require_role(actor, Role.MANAGER)
        if not reason or not reason.strip():
            raise ValidationError("冲正必须填写原因")
        with self.db.transaction():
            original = self.get_transaction(transaction_id)
            self._check_reversible(original)
            if not self.ledger.claim_reversal(transaction_id, reason):
                self._check_reversible(self.get_transaction(transaction_id))
                raise PolicyError("already_reversed", "该流水已被冲正",
                                  {"transaction_id": transaction_id})
            reversal = self._post(
                original.user_id, original.balance_type, TransactionType.REVERSAL,
                -original.amount_cents, f"冲正: {reason}", actor.user_id,
                reference_type="transaction", reference_id=transaction_id,
                original_transaction_id=transaction_id,
            )
            self.audit.record("transaction", transaction_id, "reverse", actor.user_id,
                              user_id=original.user_id,
                              before=original.model_dump(mode="json"),
                              after=reversal.model_dump(mode="json"), reason=reason)
        logger.info("transaction %s reversed by %s", transaction_id, actor.user_id)
        return reversal

    @staticmethod
    def _check_reversible(txn: Transaction):
        if txn.type == TransactionType.REVERSAL:
            raise PolicyError("reversal_not_reversible", "冲正流水不能再次冲正",
                              {"transaction_id": txn.transaction_id})
        if txn.is_reversed:
            raise PolicyError("already_reversed", "该流水已被冲正",
                              {"transaction_id": txn.transaction_id})

    def correct_transaction(self, actor: Actor, transaction_id: int, reason: str,
                            new_amount_cents: Optional[int] = None,
                            new_description: Optional[str] = None) -> Transaction:
        """更正流水金额或描述；金额变化时只把差额计入缓存余额"""
        require_role(actor, Role.SUPERADMIN, "只有超级管理员可以更正流水")
        if not reason or not reason.strip():
            raise ValidationError("更正必须填写原因")
        if new_amount_cents is None and new_description is None:
            raise ValidationError("没有需要更正的内容")
        with self.db.transaction():
            before = self.get_transaction(transaction_id)
            amount = before.amount_cents if new_amount_cents is None else new_amount_cents
            description = before.description if new_description is None else new_description
            delta = amount - before.amount_cents
            if delta:
                self._check_correctable_amount(before, amount)
                if self.ledger.apply_delta(before.user_id, before.balance_type.value, delta) is None:
                    raise PolicyError("balance_frozen", "该余额已冻结，无法变动",
                                      {"user_id": before.user_id,
                                       "balance_type": before.balance_type.value})
            self.ledger.apply_correction(transaction_id, amount, description, self.clock.local_now())
            after = self.get_transaction(transaction_id)
            self.audit.record("transaction", transaction_id, "correct", actor.user_id,
                              user_id=before.user_id,
                              before=before.model_dump(mode="json"),
                              after=after.model_dump(mode="json"), reason=reason)
        logger.info("transaction %s corrected by %s, delta %s", transaction_id, actor.user_id, delta)
        return after

    @staticmethod
    def _check_correctable_amount(txn: Transaction, amount: int):
        if txn.type == TransactionType.REVERSAL or txn.is_reversed:
            raise PolicyError("correction_not_allowed", "已冲正或冲正流水不能更正金额",
                              {"transaction_id": txn.transaction_id})
        if txn.type in (TransactionType.DEPOSIT, TransactionType.REFUND) and amount <= 0:
            raise ValidationError("充值/退款金额必须为正数")
        if txn.type == TransactionType.DEDUCTION and amount >= 0:
            raise ValidationError("扣费金额必须为负数")

    def corrections(self, transaction_id: int) -> List[AuditEntry]:
        """流水的更正历史（含前后快照）"""
        self.get_transaction(transaction_id)
        return self.audit.for_entity("transaction", transaction_id, action="correct")

    def record_carry_forward(self, actor: Actor, user_id: int, balance_type: BalanceType,
                             month_id: int, description: str) -> Optional[Transaction]:
        """写入零金额的结转说明流水；余额本身不变，余额为零时不写"""
        balance = self.ledger.get_balance(user_id, balance_type.value)
        if balance is None or balance.amount_cents == 0:
            return None
        return self.ledger.insert_transaction({
            "user_id": user_id,
            "type": TransactionType.ADJUSTMENT.value,
            "balance_type": balance_type.value,
            "amount_cents": 0,
            "previous_balance_cents": balance.amount_cents,
            "new_balance_cents": balance.amount_cents,
            "description": description,
            "reference_type": "month",
            "reference_id": month_id,
            "performed_by": actor.user_id,
            "created_at": self.clock.local_now(),
        })

    # ---- 余额 ----

    def get_balance(self, user_id: int, balance_type: str) -> Balance:
        balance_type = self._parse_balance_type(balance_type)
        self._require_user(user_id)
        balance = self.ledger.get_balance(user_id, balance_type.value)
        return balance or Balance(user_id=user_id, balance_type=balance_type)

    def get_balances(self, user_id: int) -> Dict[str, Balance]:
        self._require_user(user_id)
        existing = {b.balance_type.value: b for b in self.ledger.list_balances(user_id)}
        return {
            bt.value: existing.get(bt.value) or Balance(user_id=user_id, balance_type=bt)
            for bt in BalanceType
        }

    def correct_balance(self, actor: Actor, user_id: int, balance_type: str, target_cents: int,
                        reason: str) -> Transaction:
        """超级管理员直接设定余额，以 adjustment 流水记录差额"""
        require_role(actor, Role.SUPERADMIN, "只有超级管理员可以直接修改余额")
        if not reason or not reason.strip():
            raise ValidationError("修改余额必须填写原因")
        with self.db.transaction():
            before = self.get_balance(user_id, balance_type)
            txn = self.apply_transaction(actor, user_id, balance_type, TransactionType.ADJUSTMENT,
                                         target_cents=target_cents, description=f"余额更正: {reason}")
            self.audit.record("balance", f"{user_id}:{txn.balance_type.value}", "correct_balance",
                              actor.user_id, user_id=user_id,
                              before=before.model_dump(mode="json"),
                              after={"amount_cents": txn.new_balance_cents}, reason=reason)
        return txn

    def freeze(self, actor: Actor, user_id: int, balance_type: str, reason: str) -> Balance:
        require_role(actor, Role.ADMIN)
        if not reason or not reason.strip():
            raise ValidationError("冻结必须填写原因")
        return self._set_frozen(actor, user_id, balance_type, True, reason)

    def unfreeze(self, actor: Actor, user_id: int, balance_type: str) -> Balance:
        require_role(actor, Role.ADMIN)
        return self._set_frozen(actor, user_id, balance_type, False, None)

    def _set_frozen(self, actor: Actor, user_id: int, balance_type: str, frozen: bool,
                    reason: Optional[str]) -> Balance:
        balance_type = self._parse_balance_type(balance_type)
        with self.db.transaction():
            self._require_user(user_id)
            self.ledger.ensure_balance(user_id, balance_type.value)
            changed = self.ledger.set_frozen(
                user_id, balance_type.value, frozen,
                actor.user_id if frozen else None, reason,
                self.clock.local_now() if frozen else None,
            )
            if not changed:
                if frozen:
                    raise PolicyError("already_frozen", "该余额已处于冻结状态")
                raise PolicyError("not_frozen", "该余额未冻结")
            self.audit.record("balance", f"{user_id}:{balance_type.value}",
                              "freeze" if frozen else "unfreeze", actor.user_id,
                              user_id=user_id, reason=reason)
        logger.info("balance %s/%s %s by %s", user_id, balance_type.value,
                    "frozen" if frozen else "unfrozen", actor.user_id)
        return self.ledger.get_balance(user_id, balance_type.value)

    # ---- 查询与核对 ----

    def get_transaction(self, transaction_id: int) -> Transaction:
        txn = self.ledger.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError("流水", transaction_id)
        return txn

    def history(self, actor: Actor, user_id: int, balance_type: Optional[str] = None,
                limit: int = 50, offset: int = 0) -> TransactionPage:
        """流水分页；普通用户只能查看自己的流水"""
        require_self_or_manager(actor, user_id)
        if limit < 1 or limit > 500 or offset < 0:
            raise ValidationError("分页参数无效", {"limit": limit, "offset": offset})
        self._require_user(user_id)
        bt = self._parse_balance_type(balance_type).value if balance_type else None
        items, total = self.ledger.list_transactions(user_id, bt, limit, offset)
        return TransactionPage(items=items, total=total, limit=limit, offset=offset)

    def recalculate_balance(self, actor: Actor, user_id: int, balance_type: Optional[str] = None,
                            write: bool = False) -> List[BalanceRecalculation]:
        """核对缓存余额与流水合计；write=True 时以流水合计覆盖缓存余额"""
        require_role(actor, Role.ADMIN if write else Role.MANAGER)
        types = [self._parse_balance_type(balance_type)] if balance_type else list(BalanceType)
        self._require_user(user_id)
        results = []
        with self.db.transaction():
            for bt in types:
                cached = self.ledger.get_balance(user_id, bt.value)
                cached_cents = cached.amount_cents if cached else 0
                calculated, count = self.ledger.sum_for(user_id, bt.value)
                item = BalanceRecalculation(
                    user_id=user_id, balance_type=bt, cached_cents=cached_cents,
                    calculated_cents=calculated, difference_cents=calculated - cached_cents,
                    transaction_count=count,
                )
                if write and item.difference_cents != 0:
                    self.ledger.ensure_balance(user_id, bt.value)
                    self.ledger.set_amount(user_id, bt.value, calculated)
                    self.audit.record("balance", f"{user_id}:{bt.value}", "recalculate",
                                      actor.user_id, user_id=user_id,
                                      before={"amount_cents": cached_cents},
                                      after={"amount_cents": calculated})
                    item.fixed = True
                results.append(item)
        return results

    @staticmethod
    def _parse_type(value) -> TransactionType:
        try:
            return TransactionType(value)
        except ValueError:
            raise ValidationError(f"未知的流水类型: {value}")

    @staticmethod
    def _parse_balance_type(value) -> BalanceType:
        try:
            return BalanceType(value)
        except ValueError:
            raise ValidationError(f"未知的余额类型: {value}")
