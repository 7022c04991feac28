"""
月度账期相关数据模型
月份设置是一个带标签的变体：Persisted（已持久化）| DefaultedPreview（未持久化的默认预览），
只有 Persisted 可以被结账或结转
"""

from pydantic import BaseModel, Field, model_validator
from datetime import date, datetime
from typing import Optional, List, Union, Literal, Dict, Any
from typing_extensions import Annotated
from enum import Enum
from .base import BaseEntity


class MonthState(str, Enum):
    """月份生命周期状态"""
    DRAFT = "draft"                      # 未持久化，使用默认值
    OPEN = "open"                        # 已持久化，未结账
    FINALIZED = "finalized"              # 已结账
    CARRIED_FORWARD = "carried_forward"  # 已结账且已结转


class MonthWindow(BaseModel):
    """账期公共字段"""
    year: int = Field(..., ge=2020, le=2100)
    month: int = Field(..., ge=1, le=12)
    start_date: date
    end_date: date
    lunch_rate_cents: int = Field(0, ge=0)
    dinner_rate_cents: int = Field(0, ge=0)

    def rate_for(self, meal_type: str) -> int:
        return self.lunch_rate_cents if meal_type == "lunch" else self.dinner_rate_cents


class PersistedMonth(MonthWindow, BaseEntity):
    """已持久化的月份设置"""
    kind: Literal["persisted"] = "persisted"
    month_id: int
    is_finalized: bool = False
    finalized_at: Optional[datetime] = None
    finalized_by: Optional[int] = None
    is_carried_forward: bool = False
    carried_forward_at: Optional[datetime] = None
    carried_forward_by: Optional[int] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None
    modified_by: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def state(self) -> MonthState:
        if self.is_finalized and self.is_carried_forward:
            return MonthState.CARRIED_FORWARD
        if self.is_finalized:
            return MonthState.FINALIZED
        return MonthState.OPEN


class DefaultedMonthPreview(MonthWindow):
    """未持久化的默认月份（自然月窗口，费率来自全局默认费率）"""
    kind: Literal["preview"] = "preview"
    is_finalized: Literal[False] = False
    is_carried_forward: Literal[False] = False

    @property
    def state(self) -> MonthState:
        return MonthState.DRAFT


MonthSettings = Annotated[
    Union[PersistedMonth, DefaultedMonthPreview],
    Field(discriminator="kind"),
]


class MonthConfigureRequest(BaseModel):
    """月份配置请求（创建或更新）"""
    year: int = Field(..., ge=2020, le=2100)
    month: int = Field(..., ge=1, le=12)
    start_date: Optional[date] = Field(None, description="缺省为当月1日")
    end_date: Optional[date] = Field(None, description="缺省为当月最后一天")
    lunch_rate_cents: int = Field(..., ge=0)
    dinner_rate_cents: int = Field(0, ge=0)
    notes: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_window_order(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("开始日期不能晚于结束日期")
        return self


class MonthForceUpdateRequest(BaseModel):
    """超级管理员强制修改请求"""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    lunch_rate_cents: Optional[int] = Field(None, ge=0)
    dinner_rate_cents: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)
    reason: str = Field(..., description="修改原因（必填）")


class UserFailure(BaseModel):
    """按用户处理时的失败项"""
    user_id: int
    reason: str
    message: Optional[str] = None


class CarryForwardEntry(BaseModel):
    """一条结转记录"""
    user_id: int
    balance_type: str
    amount_cents: int
    transaction_id: int


class CarryForwardReport(BaseModel):
    """结转结果"""
    year: int
    month: int
    entries: List[CarryForwardEntry] = Field(default_factory=list)
    failed: List[UserFailure] = Field(default_factory=list)
    users_processed: int = 0


class RecalculationReport(BaseModel):
    """重算结果（逐日报告）"""
    year: int
    month: int
    meal_type: Optional[str] = None  # None 表示午餐和晚餐
    user_id: Optional[int] = None
    applied: List[date] = Field(default_factory=list)
    failed: List[Dict[str, Any]] = Field(default_factory=list)
    records_written: int = 0
    manual_records_kept: int = 0


class ResetReport(BaseModel):
    """恢复默认结果"""
    start_date: date
    end_date: date
    meal_type: Optional[str] = None
    user_id: Optional[int] = None
    deleted: int = 0
