"""
账单汇总路由
"""

from typing import List, Optional

from fastapi import APIRouter, Depends

from ...core.security import get_actor
from ...models.billing import BreakfastSummary, DueStatus, MonthlySummary, OverallSummary
from ...models.meal import MealType
from ...models.user import Actor
from ...services import ServiceContainer, get_services

router = APIRouter()


@router.get("/{year}/{month}", response_model=List[OverallSummary])
def monthly_report(year: int, month: int, status: Optional[DueStatus] = None,
                   actor: Actor = Depends(get_actor),
                   services: ServiceContainer = Depends(get_services)):
    """全体用户月度汇总，status=due 时只返回欠费用户"""
    return services.billing.monthly_report(actor, year, month, status)


@router.get("/{year}/{month}/users/{user_id}", response_model=OverallSummary)
def overall_summary(year: int, month: int, user_id: int, actor: Actor = Depends(get_actor),
                    services: ServiceContainer = Depends(get_services)):
    return services.billing.overall_summary(actor, user_id, year, month)


@router.get("/{year}/{month}/users/{user_id}/breakfast", response_model=BreakfastSummary)
def breakfast_summary(year: int, month: int, user_id: int, actor: Actor = Depends(get_actor),
                      services: ServiceContainer = Depends(get_services)):
    return services.billing.breakfast_summary(actor, user_id, year, month)


@router.get("/{year}/{month}/users/{user_id}/{meal_type}", response_model=MonthlySummary)
def monthly_summary(year: int, month: int, user_id: int, meal_type: MealType,
                    include_daily: bool = False, actor: Actor = Depends(get_actor),
                    services: ServiceContainer = Depends(get_services)):
    return services.billing.monthly_summary(actor, user_id, year, month, meal_type, include_daily)
