"""
账本相关数据模型
金额单位均为分；amount_cents 为有符号金额
"""

from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import Optional, List
from enum import Enum
from .base import BaseEntity


class BalanceType(str, Enum):
    """余额类型"""
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"


class TransactionType(str, Enum):
    """流水类型"""
    DEPOSIT = "deposit"          # 充值
    DEDUCTION = "deduction"      # 扣费
    ADJUSTMENT = "adjustment"    # 调整（有符号差额或目标值）
    REFUND = "refund"            # 退款
    REVERSAL = "reversal"        # 冲正（只能由冲正操作产生）


class Transaction(BaseEntity):
    """账本流水"""
    transaction_id: int
    user_id: int
    type: TransactionType
    balance_type: BalanceType
    amount_cents: int
    previous_balance_cents: int
    new_balance_cents: int
    description: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    performed_by: Optional[int] = None
    is_reversed: bool = False
    original_transaction_id: Optional[int] = None
    reversal_reason: Optional[str] = None
    correction_count: int = 0
    last_corrected_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class Balance(BaseEntity):
    """缓存余额"""
    user_id: int
    balance_type: BalanceType
    amount_cents: int = 0
    is_frozen: bool = False
    frozen_at: Optional[datetime] = None
    frozen_by: Optional[int] = None
    frozen_reason: Optional[str] = None


class TransactionRequest(BaseModel):
    """记账请求

    deposit / deduction / refund 传入正数金额；adjustment 传入有符号差额 amount_cents
    或目标余额 target_cents（二选一）
    """
    user_id: int
    balance_type: BalanceType
    type: TransactionType
    amount_cents: Optional[int] = None
    target_cents: Optional[int] = None
    description: Optional[str] = Field(None, max_length=500)
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None

    @model_validator(mode="after")
    def check_amount_or_target(self):
        if self.type == TransactionType.ADJUSTMENT:
            if (self.amount_cents is None) == (self.target_cents is None):
                raise ValueError("调整需要且只能提供 amount_cents 或 target_cents 之一")
        elif self.amount_cents is None:
            raise ValueError("amount_cents 为必填项")
        return self


class ReversalRequest(BaseModel):
    """冲正请求"""
    reason: str = Field(..., min_length=1, max_length=500)


class CorrectionRequest(BaseModel):
    """流水更正请求（超级管理员）"""
    new_amount_cents: Optional[int] = None
    new_description: Optional[str] = Field(None, max_length=500)
    reason: str = Field(..., min_length=1, max_length=500)


class FreezeRequest(BaseModel):
    """冻结请求"""
    reason: str = Field(..., min_length=1, max_length=500)


class BalanceCorrectionRequest(BaseModel):
    """直接设定余额（超级管理员）"""
    target_cents: int
    reason: str = Field(..., min_length=1, max_length=500)


class BalanceRecalculation(BaseModel):
    """缓存余额与流水合计的对比"""
    user_id: int
    balance_type: BalanceType
    cached_cents: int
    calculated_cents: int
    difference_cents: int
    transaction_count: int
    fixed: bool = False


class TransactionPage(BaseModel):
    """流水分页"""
    items: List[Transaction] = Field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0
