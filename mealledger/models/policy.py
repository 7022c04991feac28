"""
全局策略相关数据模型
包括周末策略、节假日策略、截止时间、默认用餐状态以及费率规则
"""

import uuid
from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import date
from typing import Optional, List, Dict
from enum import Enum
from .holiday import HolidayType


class WeekendPolicy(BaseModel):
    """周末策略；weekday 取值 0=周日 ... 6=周六"""
    off_weekdays: List[int] = Field(default_factory=lambda: [5], description="默认关闭的星期")
    odd_saturday_off: bool = Field(True, description="第1/3/5个周六关闭")
    even_saturday_off: bool = Field(False, description="第2/4个周六关闭")

    @field_validator("off_weekdays")
    @classmethod
    def validate_weekdays(cls, v):
        for day in v:
            if day < 0 or day > 6:
                raise ValueError("星期取值必须在 0-6 之间")
        return sorted(set(v))


class HolidayPolicy(BaseModel):
    """节假日策略：按类型决定是否默认关闭"""
    enabled: bool = True
    government_off: bool = True
    optional_off: bool = False
    religious_off: bool = True

    def suppresses(self, holiday_type: HolidayType) -> bool:
        if not self.enabled:
            return False
        return {
            HolidayType.GOVERNMENT: self.government_off,
            HolidayType.OPTIONAL: self.optional_off,
            HolidayType.RELIGIOUS: self.religious_off,
        }[HolidayType(holiday_type)]


class CutoffTimes(BaseModel):
    """当天切换的截止时刻（24小时制整点）"""
    lunch: int = Field(10, ge=0, le=23)
    dinner: int = Field(16, ge=0, le=23)


class DefaultMealStatus(BaseModel):
    """非关闭日的默认用餐状态"""
    lunch: bool = True
    dinner: bool = True


class DefaultRates(BaseModel):
    """没有月份设置时使用的默认单价（分）"""
    lunch: int = Field(0, ge=0)
    dinner: int = Field(0, ge=0)


class ConditionType(str, Enum):
    """费率规则条件类型"""
    DAY_OF_WEEK = "day_of_week"
    DATE_RANGE = "date_range"
    HOLIDAY = "holiday"
    USER_COUNT = "user_count"
    SPECIAL_EVENT = "special_event"


class AdjustmentType(str, Enum):
    """费率调整方式"""
    FIXED = "fixed"              # 直接设为 value（分）
    PERCENTAGE = "percentage"    # 基础价 * (1 + value/100)
    MULTIPLIER = "multiplier"    # 基础价 * value


class ApplyTo(str, Enum):
    """规则适用的餐次"""
    LUNCH = "lunch"
    DINNER = "dinner"
    BOTH = "both"


class ConditionParams(BaseModel):
    """条件参数，按 condition_type 取用对应字段"""
    days: Optional[List[int]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    min_users: Optional[int] = Field(None, ge=0)
    max_users: Optional[int] = Field(None, ge=0)
    holiday_types: Optional[List[HolidayType]] = None
    event_name: Optional[str] = None

    @model_validator(mode="after")
    def check_user_bounds(self):
        if self.min_users is not None and self.max_users is not None and self.min_users > self.max_users:
            raise ValueError("min_users 不能大于 max_users")
        return self


class RateAdjustment(BaseModel):
    """费率调整"""
    type: AdjustmentType = AdjustmentType.FIXED
    value: float = 0
    apply_to: ApplyTo = ApplyTo.BOTH

    @model_validator(mode="after")
    def check_non_negative_result(self):
        # 调整后的单价不能为负
        if self.type == AdjustmentType.PERCENTAGE and self.value < -100:
            raise ValueError("百分比调整不能低于 -100")
        if self.type in (AdjustmentType.FIXED, AdjustmentType.MULTIPLIER) and self.value < 0:
            raise ValueError("固定价和倍数不能为负")
        return self


class RateRuleInput(BaseModel):
    """费率规则可编辑字段"""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    is_active: bool = True
    priority: int = Field(0, description="越大越先评估")
    condition_type: ConditionType
    condition_params: ConditionParams = Field(default_factory=ConditionParams)
    adjustment: RateAdjustment = Field(default_factory=RateAdjustment)
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None

    @model_validator(mode="after")
    def check_validity_window(self):
        if self.valid_from and self.valid_until and self.valid_from > self.valid_until:
            raise ValueError("valid_from 不能晚于 valid_until")
        return self


class RateRule(RateRuleInput):
    """带标识的费率规则"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    def is_valid_on(self, d: date) -> bool:
        if self.valid_from and d < self.valid_from:
            return False
        if self.valid_until and d > self.valid_until:
            return False
        return True

    def applies_to(self, meal_type: str) -> bool:
        return self.adjustment.apply_to in (ApplyTo.BOTH, ApplyTo(meal_type))


class RateRuleUpdate(BaseModel):
    """费率规则部分更新"""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = None
    condition_type: Optional[ConditionType] = None
    condition_params: Optional[ConditionParams] = None
    adjustment: Optional[RateAdjustment] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None


class RateRuleSet(BaseModel):
    """费率规则集"""
    enabled: bool = False
    rules: List[RateRule] = Field(default_factory=list)


class PolicySettings(BaseModel):
    """全局策略文档（单例）"""
    version: int = 0
    weekend_policy: WeekendPolicy = Field(default_factory=WeekendPolicy)
    holiday_policy: HolidayPolicy = Field(default_factory=HolidayPolicy)
    cutoff_times: CutoffTimes = Field(default_factory=CutoffTimes)
    default_meal_status: DefaultMealStatus = Field(default_factory=DefaultMealStatus)
    default_rates: DefaultRates = Field(default_factory=DefaultRates)
    rate_rules: RateRuleSet = Field(default_factory=RateRuleSet)
    modified_by: Optional[int] = None

    def document(self) -> Dict:
        """用于持久化的文档（不含版本和修改人）"""
        return self.model_dump(mode="json", exclude={"version", "modified_by"})


class AppliedRule(BaseModel):
    """一次费率解析中命中的规则"""
    rule_id: str
    name: str
    priority: int
    adjustment_type: AdjustmentType
    value: float
    rate_after: float


class RateResolution(BaseModel):
    """费率解析结果（金额单位：分）"""
    base_rate_cents: int
    final_rate_cents: int
    applied_rules: List[AppliedRule] = Field(default_factory=list)
