"""
早餐事件数据模型
早餐按事件计费，总费用在参与人之间平摊
"""

from pydantic import BaseModel, Field, field_validator
from datetime import date as date_type, datetime
from typing import Optional, List
from .base import BaseEntity


class BreakfastCreate(BaseModel):
    """早餐事件创建模型"""
    date: date_type
    total_cost_cents: int = Field(..., ge=0)
    participant_ids: List[int] = Field(..., min_length=1)
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("participant_ids")
    @classmethod
    def unique_participants(cls, v):
        if len(v) != len(set(v)):
            raise ValueError("参与人不能重复")
        return v


class ParticipantCost(BaseModel):
    """单个参与人的指定费用"""
    user_id: int
    cost_cents: int = Field(..., ge=0)


class BreakfastUpdate(BaseModel):
    """
    早餐事件修改模型
    participant_costs 按人指定费用，总费用取其合计；
    否则用 total_cost_cents / participant_ids 重新平摊，未提供的一项沿用原值
    """
    total_cost_cents: Optional[int] = Field(None, ge=0)
    participant_ids: Optional[List[int]] = Field(None, min_length=1)
    participant_costs: Optional[List[ParticipantCost]] = Field(None, min_length=1)
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("participant_ids")
    @classmethod
    def unique_participants(cls, v):
        if v is not None and len(v) != len(set(v)):
            raise ValueError("参与人不能重复")
        return v

    @field_validator("participant_costs")
    @classmethod
    def unique_costs(cls, v):
        if v is not None and len({p.user_id for p in v}) != len(v):
            raise ValueError("参与人不能重复")
        return v


class BreakfastParticipant(BaseEntity):
    """早餐参与人及分摊金额"""
    user_id: int
    cost_cents: int
    deducted: bool = False
    deducted_at: Optional[datetime] = None
    transaction_id: Optional[int] = None


class Breakfast(BaseEntity):
    """早餐事件"""
    breakfast_id: int
    date: date_type
    total_cost_cents: int
    description: Optional[str] = None
    submitted_by: Optional[int] = None
    is_reversed: bool = False
    reversed_at: Optional[datetime] = None
    reversed_by: Optional[int] = None
    reverse_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    participants: List[BreakfastParticipant] = Field(default_factory=list)


class DeductionFailure(BaseModel):
    """扣费失败的参与人"""
    user_id: int
    reason: str
    message: Optional[str] = None


class BreakfastDeductionReport(BaseModel):
    """早餐扣费结果"""
    breakfast_id: int
    deducted: List[int] = Field(default_factory=list)
    already_deducted: List[int] = Field(default_factory=list)
    failed: List[DeductionFailure] = Field(default_factory=list)


class BreakfastReverseRequest(BaseModel):
    """早餐冲正请求"""
    reason: str = Field(..., min_length=1, max_length=500)


class BreakfastRefund(BaseModel):
    """冲正时的单笔退款"""
    user_id: int
    amount_cents: int
    transaction_id: Optional[int] = None


class BreakfastReversalReport(BaseModel):
    """早餐冲正结果"""
    breakfast_id: int
    reason: str
    refunds: List[BreakfastRefund] = Field(default_factory=list)
    # 扣费流水已在账本中单独冲正过的参与人
    already_refunded: List[int] = Field(default_factory=list)
