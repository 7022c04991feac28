"""
账本路由：余额、记账、冲正、更正、冻结、流水、对账
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from ...core.security import get_actor, require_self_or_manager
from ...models.audit import AuditEntry
from ...models.ledger import (
    Balance,
    BalanceCorrectionRequest,
    BalanceRecalculation,
    BalanceType,
    CorrectionRequest,
    FreezeRequest,
    ReversalRequest,
    Transaction,
    TransactionPage,
    TransactionRequest,
)
from ...models.user import Actor
from ...services import ServiceContainer, get_services

router = APIRouter()


@router.post("/transactions", response_model=Transaction)
def apply_transaction(req: TransactionRequest, actor: Actor = Depends(get_actor),
                      services: ServiceContainer = Depends(get_services)):
    return services.ledger.apply_transaction(
        actor, req.user_id, req.balance_type, req.type,
        amount_cents=req.amount_cents, description=req.description,
        target_cents=req.target_cents, reference_type=req.reference_type,
        reference_id=req.reference_id,
    )


@router.get("/transactions/{transaction_id}", response_model=Transaction)
def get_transaction(transaction_id: int, actor: Actor = Depends(get_actor),
                    services: ServiceContainer = Depends(get_services)):
    txn = services.ledger.get_transaction(transaction_id)
    require_self_or_manager(actor, txn.user_id)
    return txn


@router.post("/transactions/{transaction_id}/reverse", response_model=Transaction)
def reverse_transaction(transaction_id: int, req: ReversalRequest,
                        actor: Actor = Depends(get_actor),
                        services: ServiceContainer = Depends(get_services)):
    """生成一笔反向流水；同一流水只能冲正一次"""
    return services.ledger.reverse_transaction(actor, transaction_id, req.reason)


@router.post("/transactions/{transaction_id}/correct", response_model=Transaction)
def correct_transaction(transaction_id: int, req: CorrectionRequest,
                        actor: Actor = Depends(get_actor),
                        services: ServiceContainer = Depends(get_services)):
    return services.ledger.correct_transaction(actor, transaction_id, req.reason,
                                               req.new_amount_cents, req.new_description)


@router.get("/transactions/{transaction_id}/corrections", response_model=List[AuditEntry])
def transaction_corrections(transaction_id: int, actor: Actor = Depends(get_actor),
                            services: ServiceContainer = Depends(get_services)):
    txn = services.ledger.get_transaction(transaction_id)
    require_self_or_manager(actor, txn.user_id)
    return services.ledger.corrections(transaction_id)


@router.get("/users/{user_id}/balances", response_model=Dict[str, Balance])
def get_balances(user_id: int, actor: Actor = Depends(get_actor),
                 services: ServiceContainer = Depends(get_services)):
    require_self_or_manager(actor, user_id)
    return services.ledger.get_balances(user_id)


@router.get("/users/{user_id}/transactions", response_model=TransactionPage)
def history(user_id: int, balance_type: Optional[BalanceType] = None,
            limit: int = Query(50, ge=1, le=500), offset: int = Query(0, ge=0),
            actor: Actor = Depends(get_actor),
            services: ServiceContainer = Depends(get_services)):
    return services.ledger.history(actor, user_id, balance_type, limit, offset)


@router.post("/users/{user_id}/balances/{balance_type}/correct", response_model=Transaction)
def correct_balance(user_id: int, balance_type: BalanceType, req: BalanceCorrectionRequest,
                    actor: Actor = Depends(get_actor),
                    services: ServiceContainer = Depends(get_services)):
    return services.ledger.correct_balance(actor, user_id, balance_type, req.target_cents,
                                           req.reason)


@router.post("/users/{user_id}/balances/{balance_type}/freeze", response_model=Balance)
def freeze(user_id: int, balance_type: BalanceType, req: FreezeRequest,
           actor: Actor = Depends(get_actor),
           services: ServiceContainer = Depends(get_services)):
    return services.ledger.freeze(actor, user_id, balance_type, req.reason)


@router.post("/users/{user_id}/balances/{balance_type}/unfreeze", response_model=Balance)
def unfreeze(user_id: int, balance_type: BalanceType, actor: Actor = Depends(get_actor),
             services: ServiceContainer = Depends(get_services)):
    return services.ledger.unfreeze(actor, user_id, balance_type)


@router.post("/users/{user_id}/recalculate", response_model=List[BalanceRecalculation])
def recalculate_balance(user_id: int, balance_type: Optional[BalanceType] = None,
                        write: bool = False, actor: Actor = Depends(get_actor),
                        services: ServiceContainer = Depends(get_services)):
    """核对缓存余额与流水合计，write=true 时修正缓存余额"""
    return services.ledger.recalculate_balance(actor, user_id, balance_type, write)


@router.post("/consistency-check")
def consistency_check(fix: bool = False, actor: Actor = Depends(get_actor),
                      services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """全量对账（管理员）"""
    return services.consistency.check(actor, fix)
