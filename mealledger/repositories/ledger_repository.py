"""
账本仓储：缓存余额（user_balances）和流水（transactions）
余额变更是带冻结条件的单条 UPDATE ... RETURNING，避免先读后写
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .base import BaseRepository
from ..models.ledger import Balance, Transaction

BALANCE_COLUMNS = (
    "user_id, balance_type, amount_cents, is_frozen, frozen_at, frozen_by, frozen_reason"
)
TRANSACTION_COLUMNS = (
    "transaction_id, user_id, type, balance_type, amount_cents, previous_balance_cents, "
    "new_balance_cents, description, reference_type, reference_id, performed_by, is_reversed, "
    "original_transaction_id, reversal_reason, correction_count, last_corrected_at, created_at"
)


class LedgerRepository(BaseRepository):
    """余额和流水访问"""

    # ---- 余额 ----

    def ensure_balance(self, user_id: int, balance_type: str) -> None:
        self.db.execute(
            "INSERT INTO user_balances(user_id, balance_type) VALUES (?, ?) "
            "ON CONFLICT (user_id, balance_type) DO NOTHING",
            [user_id, balance_type],
        )

    def get_balance(self, user_id: int, balance_type: str) -> Optional[Balance]:
        row = self.db.fetch_dict(
            f"SELECT {BALANCE_COLUMNS} FROM user_balances WHERE user_id = ? AND balance_type = ?",
            [user_id, balance_type],
        )
        return Balance.model_validate(row) if row else None

    def list_balances(self, user_id: Optional[int] = None) -> List[Balance]:
        query = f"SELECT {BALANCE_COLUMNS} FROM user_balances"
        params = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        rows = self.db.fetch_dicts(query + " ORDER BY user_id, balance_type", params)
        return [Balance.model_validate(r) for r in rows]

    def apply_delta(self, user_id: int, balance_type: str, delta: int) -> Optional[int]:
        """未冻结时原子地加上 delta，返回新余额；冻结或不存在时返回 None"""
        row = self.db.execute_one(
            """
            UPDATE user_balances SET amount_cents = amount_cents + ?
            WHERE user_id = ? AND balance_type = ? AND NOT is_frozen
            RETURNING amount_cents
            """,
            [delta, user_id, balance_type],
        )
        return row[0] if row else None

    def set_amount(self, user_id: int, balance_type: str, amount_cents: int) -> None:
        """直接写入缓存余额（仅用于对账修复）"""
        self.db.execute(
            "UPDATE user_balances SET amount_cents = ? WHERE user_id = ? AND balance_type = ?",
            [amount_cents, user_id, balance_type],
        )

    def set_frozen(self, user_id: int, balance_type: str, frozen: bool,
                   actor_id: Optional[int], reason: Optional[str], at: Optional[datetime]) -> bool:
        """切换冻结状态；当前状态已是目标状态时返回 False"""
        row = self.db.execute_one(
            """
            UPDATE user_balances
            SET is_frozen = ?, frozen_at = ?, frozen_by = ?, frozen_reason = ?
            WHERE user_id = ? AND balance_type = ? AND is_frozen = ?
            RETURNING user_id
            """,
            [frozen, at, actor_id, reason, user_id, balance_type, not frozen],
        )
        return row is not None

    # ---- 流水 ----

    def insert_transaction(self, data: Dict[str, Any]) -> Transaction:
        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)
        row = self.db.execute_one(
            f"INSERT INTO transactions({columns}) VALUES ({placeholders}) RETURNING transaction_id",
            list(data.values()),
        )
        return self.get_transaction(row[0])

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        row = self.db.fetch_dict(
            f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE transaction_id = ?",
            [transaction_id],
        )
        return Transaction.model_validate(row) if row else None

    def claim_reversal(self, transaction_id: int, reason: str) -> bool:
        """抢占冲正：只有未冲正且不是冲正流水的记录能成功一次"""
        row = self.db.execute_one(
            """
            UPDATE transactions SET is_reversed = TRUE, reversal_reason = ?
            WHERE transaction_id = ? AND NOT is_reversed AND type <> 'reversal'
            RETURNING transaction_id
            """,
            [reason, transaction_id],
        )
        return row is not None

    def apply_correction(self, transaction_id: int, amount_cents: int,
                         description: Optional[str], at: datetime) -> None:
        self.db.execute(
            """
            UPDATE transactions
            SET amount_cents = ?,
                new_balance_cents = previous_balance_cents + ?,
                description = ?,
                correction_count = correction_count + 1,
                last_corrected_at = ?
            WHERE transaction_id = ?
            """,
            [amount_cents, amount_cents, description, at, transaction_id],
        )

    def list_transactions(self, user_id: int, balance_type: Optional[str] = None,
                          limit: int = 50, offset: int = 0) -> Tuple[List[Transaction], int]:
        where = "user_id = ?"
        params: list = [user_id]
        if balance_type:
            where += " AND balance_type = ?"
            params.append(balance_type)
        total = self.db.execute_one(f"SELECT COUNT(*) FROM transactions WHERE {where}", params)[0]
        rows = self.db.fetch_dicts(
            f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE {where} "
            "ORDER BY created_at DESC, transaction_id DESC LIMIT ? OFFSET ?",
            params + [limit, offset],
        )
        return [Transaction.model_validate(r) for r in rows], total

    def sum_for(self, user_id: int, balance_type: str) -> Tuple[int, int]:
        """流水合计和笔数"""
        row = self.db.execute_one(
            "SELECT COALESCE(SUM(amount_cents), 0), COUNT(*) FROM transactions "
            "WHERE user_id = ? AND balance_type = ?",
            [user_id, balance_type],
        )
        return int(row[0]), int(row[1])

    def ledger_totals(self) -> List[Dict[str, Any]]:
        """全部 (user_id, balance_type) 的缓存余额与流水合计对照"""
        return self.db.fetch_dicts(
            """
            SELECT b.user_id, b.balance_type, b.amount_cents AS cached_cents,
                   COALESCE(SUM(t.amount_cents), 0) AS calculated_cents,
                   COUNT(t.transaction_id) AS transaction_count
            FROM user_balances b
            LEFT JOIN transactions t
              ON t.user_id = b.user_id AND t.balance_type = b.balance_type
            GROUP BY b.user_id, b.balance_type, b.amount_cents
            ORDER BY b.user_id, b.balance_type
            """
        )

    def orphan_transactions(self) -> List[Dict[str, Any]]:
        """有流水但没有余额行的组合"""
        return self.db.fetch_dicts(
            """
            SELECT t.user_id, t.balance_type, SUM(t.amount_cents) AS calculated_cents,
                   COUNT(*) AS transaction_count
            FROM transactions t
            LEFT JOIN user_balances b
              ON t.user_id = b.user_id AND t.balance_type = b.balance_type
            WHERE b.user_id IS NULL
            GROUP BY t.user_id, t.balance_type
            """
        )
