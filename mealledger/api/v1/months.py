"""
月度账期路由：配置、结账、结转、强制修改、重算、恢复默认
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from ...core.security import get_actor, require_role
from ...models.audit import AuditEntry
from ...models.meal import MealType
from ...models.month import (
    CarryForwardReport,
    MonthConfigureRequest,
    MonthForceUpdateRequest,
    MonthSettings,
    PersistedMonth,
    RecalculationReport,
    ResetReport,
)
from ...models.user import Actor, Role
from ...services import ServiceContainer, get_services

router = APIRouter()


class UnfinalizeRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ResetRequest(BaseModel):
    start_date: date
    end_date: date
    user_id: Optional[int] = None
    meal_type: Optional[MealType] = None  # 为空表示午餐和晚餐


class RecalculateRequest(BaseModel):
    meal_type: Optional[MealType] = None
    user_id: Optional[int] = None


@router.get("", response_model=List[PersistedMonth])
def list_months(year: Optional[int] = None, services: ServiceContainer = Depends(get_services)):
    return services.months.list_months(year)


@router.get("/current", response_model=MonthSettings)
def current_month(services: ServiceContainer = Depends(get_services)):
    return services.months.current_month()


@router.post("", response_model=PersistedMonth)
def configure_month(req: MonthConfigureRequest, actor: Actor = Depends(get_actor),
                    services: ServiceContainer = Depends(get_services)):
    """创建或更新月份设置（已结账的月份会被拒绝）"""
    return services.months.configure(actor, req)


@router.post("/reset", response_model=ResetReport)
def reset_to_default(req: ResetRequest, actor: Actor = Depends(get_actor),
                     services: ServiceContainer = Depends(get_services)):
    """删除区间内的手动记录，恢复为策略默认状态"""
    return services.months.reset_to_default(actor, req.start_date, req.end_date, req.user_id,
                                           req.meal_type)


@router.get("/{year}/{month}", response_model=MonthSettings)
def get_month(year: int, month: int, services: ServiceContainer = Depends(get_services)):
    """未配置的月份返回默认预览（kind=preview），不落库"""
    return services.months.get_month(year, month)


@router.post("/{year}/{month}/finalize", response_model=PersistedMonth)
def finalize_month(year: int, month: int, actor: Actor = Depends(get_actor),
                   services: ServiceContainer = Depends(get_services)):
    return services.months.finalize(actor, year, month)


@router.post("/{year}/{month}/carry-forward", response_model=CarryForwardReport)
def carry_forward(year: int, month: int, actor: Actor = Depends(get_actor),
                  services: ServiceContainer = Depends(get_services)):
    return services.months.carry_forward(actor, year, month)


@router.post("/{year}/{month}/recalculate", response_model=RecalculationReport)
def recalculate(year: int, month: int, req: Optional[RecalculateRequest] = None,
                actor: Actor = Depends(get_actor),
                services: ServiceContainer = Depends(get_services)):
    """按当前策略重算非手动记录，可限定餐次和用户"""
    req = req or RecalculateRequest()
    return services.months.recalculate(actor, year, month, req.meal_type, req.user_id)


@router.post("/{year}/{month}/force-update", response_model=PersistedMonth)
def force_update(year: int, month: int, req: MonthForceUpdateRequest,
                 actor: Actor = Depends(get_actor),
                 services: ServiceContainer = Depends(get_services)):
    return services.months.force_update(actor, year, month, req)


@router.post("/{year}/{month}/unfinalize", response_model=PersistedMonth)
def force_unfinalize(year: int, month: int, req: UnfinalizeRequest = Body(...),
                     actor: Actor = Depends(get_actor),
                     services: ServiceContainer = Depends(get_services)):
    return services.months.force_unfinalize(actor, year, month, req.reason)


@router.get("/{year}/{month}/force-updates", response_model=List[AuditEntry])
def force_update_history(year: int, month: int, actor: Actor = Depends(get_actor),
                         services: ServiceContainer = Depends(get_services)):
    require_role(actor, Role.MANAGER)
    return services.months.force_updates(year, month)
