"""
餐次资格路由：有效状态、日历、切换、份数、批量切换、每日名单、变更记录
"""

from datetime import date as date_type
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from ...core.security import get_actor, require_self_or_manager
from ...models.audit import AuditPage
from ...models.meal import (
    BulkResult,
    BulkToggleRequest,
    DailyRoster,
    DefaultOffResult,
    EffectiveStatus,
    MealCountRequest,
    MealRecord,
    MealToggleRequest,
    MealType,
    TogglePermission,
)
from ...models.policy import RateResolution
from ...models.user import Actor
from ...services import ServiceContainer, get_services

router = APIRouter()


@router.get("/status", response_model=EffectiveStatus)
def get_status(user_id: int, date: date_type, meal_type: MealType,
               actor: Actor = Depends(get_actor),
               services: ServiceContainer = Depends(get_services)):
    """某用户某日某餐的有效状态（手动记录优先，否则按策略推导）"""
    require_self_or_manager(actor, user_id)
    return services.eligibility.get_status(user_id, date, meal_type)


@router.get("/calendar", response_model=Dict[str, List[EffectiveStatus]])
def get_calendar(user_id: int, start_date: date_type, end_date: date_type,
                 actor: Actor = Depends(get_actor),
                 services: ServiceContainer = Depends(get_services)):
    require_self_or_manager(actor, user_id)
    return services.eligibility.get_calendar(user_id, start_date, end_date)


@router.get("/default-off", response_model=DefaultOffResult)
def default_off(date: date_type, services: ServiceContainer = Depends(get_services)):
    return services.eligibility.default_off(date)


@router.get("/can-toggle", response_model=TogglePermission)
def can_toggle(user_id: int, date: date_type, meal_type: MealType,
               actor: Actor = Depends(get_actor),
               services: ServiceContainer = Depends(get_services)):
    return services.eligibility.can_toggle(actor, user_id, date, meal_type)


@router.post("/toggle", response_model=MealRecord)
def toggle(req: MealToggleRequest, actor: Actor = Depends(get_actor),
           services: ServiceContainer = Depends(get_services)):
    return services.eligibility.toggle(actor, req.user_id, req.date, req.meal_type,
                                       req.is_on, req.notes)


@router.post("/count", response_model=MealRecord)
def set_count(req: MealCountRequest, actor: Actor = Depends(get_actor),
              services: ServiceContainer = Depends(get_services)):
    return services.eligibility.set_count(actor, req.user_id, req.date, req.meal_type,
                                          req.count, req.notes)


@router.post("/bulk-toggle", response_model=BulkResult)
def bulk_toggle(req: BulkToggleRequest, actor: Actor = Depends(get_actor),
                services: ServiceContainer = Depends(get_services)):
    return services.eligibility.bulk_toggle(actor, req.user_id, req.start_date, req.end_date,
                                            req.meal_type, req.is_on)


@router.get("/roster", response_model=DailyRoster)
def daily_roster(date: date_type, meal_type: MealType, actor: Actor = Depends(get_actor),
                 services: ServiceContainer = Depends(get_services)):
    return services.eligibility.daily_roster(actor, date, meal_type)


@router.get("/rate", response_model=RateResolution)
def preview_rate(date: date_type, meal_type: MealType,
                 user_count: Optional[int] = Query(None, ge=0),
                 services: ServiceContainer = Depends(get_services)):
    """某日某餐的最终单价及命中的费率规则"""
    return services.rates.preview_rate(date, meal_type, user_count)


@router.get("/audit-log", response_model=AuditPage)
def audit_log(user_id: Optional[int] = None, start_date: Optional[date_type] = None,
              end_date: Optional[date_type] = None, meal_type: Optional[MealType] = None,
              limit: int = Query(50, ge=1, le=500), offset: int = Query(0, ge=0),
              actor: Actor = Depends(get_actor),
              services: ServiceContainer = Depends(get_services)):
    """餐次变更记录，普通用户只能看到自己的"""
    return services.eligibility.audit_log(actor, user_id, start_date, end_date, meal_type,
                                          limit, offset)


@router.get("/audit-log/{user_id}", response_model=AuditPage)
def user_audit_log(user_id: int, start_date: Optional[date_type] = None,
                   end_date: Optional[date_type] = None, meal_type: Optional[MealType] = None,
                   limit: int = Query(50, ge=1, le=500),
                   actor: Actor = Depends(get_actor),
                   services: ServiceContainer = Depends(get_services)):
    return services.eligibility.audit_log(actor, user_id, start_date, end_date, meal_type, limit)
