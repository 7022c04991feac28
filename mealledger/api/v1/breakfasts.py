"""
早餐事件路由
"""

from datetime import date as date_type
from typing import List

from fastapi import APIRouter, Depends

from ...core.error_handler import create_success_response
from ...core.security import get_actor
from ...models.breakfast import (
    Breakfast,
    BreakfastCreate,
    BreakfastDeductionReport,
    BreakfastReversalReport,
    BreakfastReverseRequest,
    BreakfastUpdate,
)
from ...models.user import Actor
from ...services import ServiceContainer, get_services

router = APIRouter()


@router.get("", response_model=List[Breakfast])
def list_breakfasts(start_date: date_type, end_date: date_type,
                    services: ServiceContainer = Depends(get_services)):
    return services.breakfasts.list_breakfasts(start_date, end_date)


@router.post("", response_model=Breakfast)
def create_breakfast(data: BreakfastCreate, actor: Actor = Depends(get_actor),
                     services: ServiceContainer = Depends(get_services)):
    """登记早餐事件，总费用按参与人平摊"""
    return services.breakfasts.create(actor, data)


@router.get("/{breakfast_id}", response_model=Breakfast)
def get_breakfast(breakfast_id: int, services: ServiceContainer = Depends(get_services)):
    return services.breakfasts.get(breakfast_id)


@router.put("/{breakfast_id}", response_model=Breakfast)
def update_breakfast(breakfast_id: int, data: BreakfastUpdate, actor: Actor = Depends(get_actor),
                     services: ServiceContainer = Depends(get_services)):
    """修改尚未扣费的早餐，可按人指定费用"""
    return services.breakfasts.update(actor, breakfast_id, data)


@router.post("/{breakfast_id}/deduct", response_model=BreakfastDeductionReport)
def deduct(breakfast_id: int, actor: Actor = Depends(get_actor),
           services: ServiceContainer = Depends(get_services)):
    return services.breakfasts.deduct(actor, breakfast_id)


@router.post("/{breakfast_id}/reverse", response_model=BreakfastReversalReport)
def reverse_breakfast(breakfast_id: int, request: BreakfastReverseRequest,
                      actor: Actor = Depends(get_actor),
                      services: ServiceContainer = Depends(get_services)):
    return services.breakfasts.reverse(actor, breakfast_id, request.reason)


@router.delete("/{breakfast_id}")
def delete_breakfast(breakfast_id: int, actor: Actor = Depends(get_actor),
                     services: ServiceContainer = Depends(get_services)):
    services.breakfasts.delete(actor, breakfast_id)
    return create_success_response(message="早餐记录已删除")
