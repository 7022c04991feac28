"""
节假日相关数据模型
"""

from pydantic import BaseModel, Field, model_validator
from datetime import date as date_type
from typing import Optional
from enum import Enum
from .base import BaseEntity, TimestampMixin


class HolidayType(str, Enum):
    """节假日类型"""
    GOVERNMENT = "government"
    OPTIONAL = "optional"
    RELIGIOUS = "religious"


class HolidayBase(BaseModel):
    """节假日基础字段"""
    date: date_type = Field(..., description="日期（循环节假日只取月/日）")
    name: str = Field(..., min_length=1, max_length=200, description="名称")
    local_name: Optional[str] = Field(None, max_length=200, description="本地名称")
    type: HolidayType = Field(HolidayType.GOVERNMENT, description="类型")
    is_recurring: bool = Field(False, description="是否每年循环")


class HolidayCreate(HolidayBase):
    """节假日创建模型"""
    pass


class HolidayUpdate(BaseModel):
    """节假日更新模型"""
    date: Optional[date_type] = None
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    local_name: Optional[str] = Field(None, max_length=200)
    type: Optional[HolidayType] = None
    is_recurring: Optional[bool] = None
    is_active: Optional[bool] = None


class Holiday(HolidayBase, BaseEntity, TimestampMixin):
    """节假日完整模型"""
    holiday_id: int
    recurring_month: Optional[int] = Field(None, ge=1, le=12)
    recurring_day: Optional[int] = Field(None, ge=1, le=31)
    is_active: bool = True
    added_by: Optional[int] = None

    @model_validator(mode="after")
    def fill_recurring_parts(self):
        if self.is_recurring:
            if self.recurring_month is None:
                self.recurring_month = self.date.month
            if self.recurring_day is None:
                self.recurring_day = self.date.day
        return self

    def matches(self, d: date_type) -> bool:
        """判断给定日期是否为该节假日；循环节假日忽略年份"""
        if not self.is_active:
            return False
        if self.is_recurring:
            return d.month == self.recurring_month and d.day == self.recurring_day
        return d == self.date

    def occurrence_in(self, year: int) -> Optional[date_type]:
        """循环节假日在指定年份的日期（2月29日在非闰年不存在）"""
        if not self.is_recurring:
            return self.date if self.date.year == year else None
        try:
            return date_type(year, self.recurring_month, self.recurring_day)
        except ValueError:
            return None
