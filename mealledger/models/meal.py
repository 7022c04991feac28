"""
餐次资格相关数据模型
手动记录（MealRecord）缺省时由资格引擎推导默认状态
"""

from pydantic import BaseModel, Field
from datetime import date as date_type
from typing import Optional, List
from enum import Enum
from .base import BaseEntity, TimestampMixin


class MealType(str, Enum):
    """餐次类型枚举"""
    LUNCH = "lunch"
    DINNER = "dinner"


class StatusSource(str, Enum):
    """有效状态的来源"""
    MANUAL = "manual"     # 手动记录
    DEFAULT = "default"   # 策略推导


class MealRecord(BaseEntity, TimestampMixin):
    """手动设置的餐次记录，(user_id, date, meal_type) 唯一"""
    meal_id: Optional[int] = None
    user_id: int = Field(..., description="用户ID")
    date: date_type = Field(..., description="日期")
    meal_type: MealType = Field(..., description="餐次类型")
    is_on: bool = Field(..., description="是否用餐")
    count: int = Field(..., ge=0, description="份数")
    is_manually_set: bool = Field(True, description="是否手动设置")
    modified_by: Optional[int] = Field(None, description="最后修改人")
    notes: Optional[str] = Field(None, max_length=500, description="备注")


class DefaultOffResult(BaseModel):
    """默认关闭判断结果"""
    is_off: bool
    reason: Optional[str] = Field(None, description="weekend / holiday:<名称> / None")


class EffectiveStatus(BaseModel):
    """某用户某日某餐的有效状态"""
    date: date_type
    meal_type: MealType
    is_on: bool
    count: int = Field(..., ge=0)
    source: StatusSource
    reason: Optional[str] = None


class TogglePermission(BaseModel):
    """是否允许切换的结构化判断"""
    can_toggle: bool
    reason: Optional[str] = Field(None, description="拒绝原因码")
    message: Optional[str] = None


class MealToggleRequest(BaseModel):
    """切换请求"""
    user_id: int
    date: date_type
    meal_type: MealType
    is_on: bool
    notes: Optional[str] = Field(None, max_length=500)


class MealCountRequest(BaseModel):
    """设置份数请求（管理员）"""
    user_id: int
    date: date_type
    meal_type: MealType
    count: int = Field(..., ge=0, description="份数")
    notes: Optional[str] = Field(None, max_length=500)


class BulkToggleRequest(BaseModel):
    """批量切换请求"""
    user_id: int
    start_date: date_type
    end_date: date_type
    meal_type: MealType
    is_on: bool


class SkippedDate(BaseModel):
    """批量操作中被跳过的日期"""
    date: date_type
    reason: str
    message: Optional[str] = None


class BulkResult(BaseModel):
    """批量操作结果：逐日成功或失败"""
    applied: List[date_type] = Field(default_factory=list)
    skipped: List[SkippedDate] = Field(default_factory=list)


class RosterEntry(BaseModel):
    """每日名单中的一行"""
    user_id: int
    name: str
    is_on: bool
    count: int
    source: StatusSource


class DailyRoster(BaseModel):
    """某日某餐的用餐名单"""
    date: date_type
    meal_type: MealType
    entries: List[RosterEntry] = Field(default_factory=list)
    total_count: int = 0
