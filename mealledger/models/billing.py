"""
账单汇总数据模型
"""

from pydantic import BaseModel, Field
from datetime import date
from typing import Optional, List
from enum import Enum


class DueStatus(str, Enum):
    """应付状态：费用减余额为正/负/零"""
    DUE = "due"
    ADVANCE = "advance"
    SETTLED = "settled"

    @classmethod
    def classify(cls, due_cents: int) -> "DueStatus":
        if due_cents > 0:
            return cls.DUE
        if due_cents < 0:
            return cls.ADVANCE
        return cls.SETTLED


class DailyCharge(BaseModel):
    """单日计费明细"""
    date: date
    is_on: bool
    count: int
    rate_cents: int
    charge_cents: int
    source: str


class MonthlySummary(BaseModel):
    """某用户某月某餐的账单汇总"""
    user_id: int
    year: int
    month: int
    meal_type: str
    start_date: date
    end_date: date
    total_days: int
    days_on: int
    total_meals: int
    total_charge_cents: int
    balance_cents: int
    due_cents: int
    status: DueStatus
    rate_rules_applied: bool = False
    daily: Optional[List[DailyCharge]] = None


class BreakfastSummary(BaseModel):
    """某用户在区间内的早餐费用汇总"""
    user_id: int
    start_date: date
    end_date: date
    events: int
    total_cost_cents: int
    balance_cents: int
    due_cents: int
    status: DueStatus


class OverallSummary(BaseModel):
    """午餐+晚餐+早餐总汇总"""
    user_id: int
    year: int
    month: int
    lunch: MonthlySummary
    dinner: MonthlySummary
    breakfast: BreakfastSummary
    total_charge_cents: int
    total_balance_cents: int
    due_cents: int
    status: DueStatus = Field(..., description="due / advance / settled")
