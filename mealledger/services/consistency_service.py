"""
数据一致性检查和修复服务
核对每个 (用户, 余额类型) 的缓存余额与流水合计，必要时按流水修正缓存余额
"""

import logging
from typing import List, Dict, Any, Optional

from ..core.clock import Clock, SystemClock
from ..core.database import DatabaseManager, db_manager
from ..core.security import require_role
from ..models.user import Actor, Role
from ..repositories import AuditRepository, LedgerRepository

logger = logging.getLogger(__name__)


class ConsistencyCheckResult:
    """一致性检查结果"""

    def __init__(self, checked_at: str):
        self.issues: List[Dict[str, Any]] = []
        self.warnings: List[Dict[str, Any]] = []
        self.fixed: List[Dict[str, Any]] = []
        self.statistics: Dict[str, Any] = {}
        self.checked_at = checked_at

    def add_issue(self, issue_type: str, description: str, details: Dict[str, Any] = None):
        self.issues.append({
            'type': issue_type,
            'description': description,
            'details': details or {},
            'severity': 'error',
        })

    def add_warning(self, warning_type: str, description: str, details: Dict[str, Any] = None):
        self.warnings.append({
            'type': warning_type,
            'description': description,
            'details': details or {},
            'severity': 'warning',
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            'issues': self.issues,
            'warnings': self.warnings,
            'fixed': self.fixed,
            'statistics': self.statistics,
            'summary': {
                'total_issues': len(self.issues),
                'total_warnings': len(self.warnings),
                'total_fixed': len(self.fixed),
                'status': 'healthy' if not self.issues else 'issues_found',
                'checked_at': self.checked_at,
            }
        }


class ConsistencyService:
    """数据一致性服务"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 ledger: Optional[LedgerRepository] = None,
                 audit: Optional[AuditRepository] = None,
                 clock: Optional[Clock] = None):
        self.db = db or db_manager
        self.ledger = ledger or LedgerRepository(self.db)
        self.audit = audit or AuditRepository(self.db)
        self.clock = clock or SystemClock()

    def check(self, actor: Actor, fix: bool = False) -> Dict[str, Any]:
        """
        全量对账

        Args:
            actor: 操作人（需要管理员权限）
            fix: 是否按流水合计修正不一致的缓存余额

        Returns:
            检查结果字典
        """
        require_role(actor, Role.ADMIN)
        result = ConsistencyCheckResult(self.clock.local_now().isoformat())

        rows = self.ledger.ledger_totals()
        orphans = self.ledger.orphan_transactions()
        result.statistics = {
            'balances_checked': len(rows),
            'transactions_checked': sum(r['transaction_count'] for r in rows)
            + sum(r['transaction_count'] for r in orphans),
            'total_cached_cents': sum(r['cached_cents'] for r in rows),
            'total_calculated_cents': sum(r['calculated_cents'] for r in rows),
        }

        mismatched = []
        for row in rows:
            if row['cached_cents'] != row['calculated_cents']:
                mismatched.append(row)
                result.add_issue(
                    'balance_mismatch',
                    f"用户 {row['user_id']} 的 {row['balance_type']} 余额与流水不一致",
                    {
                        'user_id': row['user_id'],
                        'balance_type': row['balance_type'],
                        'cached_cents': row['cached_cents'],
                        'calculated_cents': row['calculated_cents'],
                        'difference_cents': row['cached_cents'] - row['calculated_cents'],
                    }
                )
            elif row['cached_cents'] < 0:
                result.add_warning(
                    'negative_balance',
                    f"用户 {row['user_id']} 的 {row['balance_type']} 余额为负数",
                    {
                        'user_id': row['user_id'],
                        'balance_type': row['balance_type'],
                        'balance_cents': row['cached_cents'],
                    }
                )

        for row in orphans:
            mismatched.append({**row, 'cached_cents': 0})
            result.add_issue(
                'missing_balance_row',
                f"用户 {row['user_id']} 的 {row['balance_type']} 有流水但没有余额记录",
                {
                    'user_id': row['user_id'],
                    'balance_type': row['balance_type'],
                    'calculated_cents': row['calculated_cents'],
                }
            )

        if fix:
            for row in mismatched:
                result.fixed.append(self._fix(actor, row))

        if result.issues:
            logger.warning("consistency check found %d issue(s), fixed %d",
                           len(result.issues), len(result.fixed))
        return result.to_dict()

    def _fix(self, actor: Actor, row: Dict[str, Any]) -> Dict[str, Any]:
        user_id, balance_type = row['user_id'], row['balance_type']
        with self.db.transaction():
            self.ledger.ensure_balance(user_id, balance_type)
            self.ledger.set_amount(user_id, balance_type, row['calculated_cents'])
            self.audit.record(
                "balance", f"{user_id}:{balance_type}", "consistency_fix", actor.user_id,
                user_id=user_id,
                before={'amount_cents': row['cached_cents']},
                after={'amount_cents': row['calculated_cents']},
                reason="按流水合计修正缓存余额",
            )
        return {
            'user_id': user_id,
            'balance_type': balance_type,
            'old_balance_cents': row['cached_cents'],
            'new_balance_cents': row['calculated_cents'],
        }
