"""
节假日目录路由
"""

from datetime import date as date_type
from typing import List, Optional

from fastapi import APIRouter, Depends

from ...core.error_handler import create_success_response
from ...core.security import get_actor
from ...models.holiday import Holiday, HolidayCreate, HolidayUpdate
from ...models.user import Actor
from ...services import ServiceContainer, get_services

router = APIRouter()


@router.get("", response_model=List[Holiday])
def list_holidays(year: Optional[int] = None, services: ServiceContainer = Depends(get_services)):
    return services.holidays.list_holidays(year)


@router.get("/range", response_model=List[Holiday])
def holidays_in_range(start_date: date_type, end_date: date_type,
                      services: ServiceContainer = Depends(get_services)):
    """区间内生效的节假日（循环节假日按月/日匹配）"""
    return services.holidays.holidays_in_range(start_date, end_date)


@router.post("", response_model=Holiday)
def add_holiday(data: HolidayCreate, actor: Actor = Depends(get_actor),
                services: ServiceContainer = Depends(get_services)):
    return services.holidays.add_holiday(data, actor)


@router.get("/{holiday_id}", response_model=Holiday)
def get_holiday(holiday_id: int, services: ServiceContainer = Depends(get_services)):
    return services.holidays.get(holiday_id)


@router.patch("/{holiday_id}", response_model=Holiday)
def update_holiday(holiday_id: int, data: HolidayUpdate, actor: Actor = Depends(get_actor),
                   services: ServiceContainer = Depends(get_services)):
    return services.holidays.update_holiday(holiday_id, data, actor)


@router.post("/{holiday_id}/deactivate", response_model=Holiday)
def deactivate_holiday(holiday_id: int, actor: Actor = Depends(get_actor),
                       services: ServiceContainer = Depends(get_services)):
    return services.holidays.deactivate_holiday(holiday_id, actor)


@router.delete("/{holiday_id}")
def delete_holiday(holiday_id: int, actor: Actor = Depends(get_actor),
                   services: ServiceContainer = Depends(get_services)):
    services.holidays.delete_holiday(holiday_id, actor)
    return create_success_response(message="节假日已删除")
