from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from ..models.holiday import Holiday, HolidayType
from ..models.month import MonthConfigureRequest
from ..models.policy import (
    AdjustmentType,
    ApplyTo,
    ConditionParams,
    ConditionType,
    PolicySettings,
    RateAdjustment,
    RateRule,
    RateRuleInput,
    RateRuleSet,
)
from ..services.rate_service import resolve_rate, round_cents

SUNDAY = date(2024, 3, 17)
MONDAY = date(2024, 3, 18)


def rule(name, condition_type, params=None, adj_type=AdjustmentType.FIXED, value=0,
         priority=0, apply_to=ApplyTo.BOTH, **extra):
    return RateRule(
        name=name,
        priority=priority,
        condition_type=condition_type,
        condition_params=ConditionParams(**(params or {})),
        adjustment=RateAdjustment(type=adj_type, value=value, apply_to=apply_to),
        **extra,
    )


def settings_with(*rules, enabled=True):
    return PolicySettings(rate_rules=RateRuleSet(enabled=enabled, rules=list(rules)))


class TestResolveRate:
    """费率规则引擎"""

    def test_disabled_rule_set_returns_base(self):
        settings = settings_with(rule("sunday", ConditionType.DAY_OF_WEEK, {"days": [0]},
                                      value=9999), enabled=False)
        result = resolve_rate(5000, SUNDAY, "lunch", settings, [])
        assert result.final_rate_cents == 5000
        assert result.applied_rules == []

    def test_day_of_week_percentage(self):
        settings = settings_with(rule("sunday +20%", ConditionType.DAY_OF_WEEK, {"days": [0]},
                                      AdjustmentType.PERCENTAGE, 20))
        assert resolve_rate(5000, SUNDAY, "lunch", settings, []).final_rate_cents == 6000
        assert resolve_rate(5000, MONDAY, "lunch", settings, []).final_rate_cents == 5000

    def test_higher_priority_evaluated_first_later_rule_wins(self):
        high = rule("fixed", ConditionType.DATE_RANGE, {}, AdjustmentType.FIXED, 7000, priority=10)
        low = rule("double", ConditionType.DATE_RANGE, {}, AdjustmentType.MULTIPLIER, 2, priority=1)
        result = resolve_rate(5000, MONDAY, "lunch", settings_with(low, high), [])
        assert [a.name for a in result.applied_rules] == ["fixed", "double"]
        # 乘数基于基础价计算，覆盖先命中的固定价
        assert result.final_rate_cents == 10000

    def test_equal_priority_keeps_insertion_order(self):
        a = rule("a", ConditionType.DATE_RANGE, {}, AdjustmentType.FIXED, 100)
        b = rule("b", ConditionType.DATE_RANGE, {}, AdjustmentType.FIXED, 200)
        result = resolve_rate(5000, MONDAY, "lunch", settings_with(a, b), [])
        assert [x.name for x in result.applied_rules] == ["a", "b"]
        assert result.final_rate_cents == 200

    def test_inactive_out_of_window_and_other_meal_rules_are_skipped(self):
        inactive = rule("inactive", ConditionType.DATE_RANGE, value=1, is_active=False)
        expired = rule("expired", ConditionType.DATE_RANGE, value=2, valid_until=date(2024, 1, 1))
        dinner_only = rule("dinner", ConditionType.DATE_RANGE, value=3, apply_to=ApplyTo.DINNER)
        result = resolve_rate(5000, MONDAY, "lunch", settings_with(inactive, expired, dinner_only), [])
        assert result.final_rate_cents == 5000
        assert resolve_rate(5000, MONDAY, "dinner",
                            settings_with(dinner_only), []).final_rate_cents == 3

    def test_holiday_condition_filters_by_type(self):
        holiday = Holiday(holiday_id=1, date=MONDAY, name="Festival", type=HolidayType.RELIGIOUS)
        religious = rule("religious", ConditionType.HOLIDAY, {"holiday_types": ["religious"]},
                         AdjustmentType.MULTIPLIER, 1.5)
        government = rule("gov", ConditionType.HOLIDAY, {"holiday_types": ["government"]},
                          AdjustmentType.FIXED, 1)
        result = resolve_rate(5000, MONDAY, "lunch", settings_with(religious, government), [holiday])
        assert [a.name for a in result.applied_rules] == ["religious"]
        assert result.final_rate_cents == 7500

    def test_user_count_requires_a_count(self):
        bulk = rule("bulk", ConditionType.USER_COUNT, {"min_users": 10},
                    AdjustmentType.PERCENTAGE, -10)
        settings = settings_with(bulk)
        assert resolve_rate(5000, MONDAY, "lunch", settings, []).final_rate_cents == 5000
        assert resolve_rate(5000, MONDAY, "lunch", settings, [], user_count=9).final_rate_cents == 5000
        assert resolve_rate(5000, MONDAY, "lunch", settings, [], user_count=12).final_rate_cents == 4500

    def test_special_event_matches_when_named(self):
        event = rule("feast", ConditionType.SPECIAL_EVENT, {"event_name": "Eid"}, value=8000)
        unnamed = rule("nothing", ConditionType.SPECIAL_EVENT, {}, value=1)
        result = resolve_rate(5000, MONDAY, "lunch", settings_with(event, unnamed), [])
        assert result.final_rate_cents == 8000

    def test_final_rate_is_rounded(self):
        third = rule("third", ConditionType.DATE_RANGE, {}, AdjustmentType.MULTIPLIER, 0.3333)
        assert resolve_rate(5001, MONDAY, "lunch", settings_with(third), []).final_rate_cents == 1667
        free = rule("free", ConditionType.DATE_RANGE, {}, AdjustmentType.PERCENTAGE, -100)
        assert resolve_rate(5000, MONDAY, "lunch", settings_with(free), []).final_rate_cents == 0

    def test_adjustments_that_would_go_negative_are_rejected(self):
        with pytest.raises(PydanticValidationError):
            RateAdjustment(type=AdjustmentType.PERCENTAGE, value=-150)
        with pytest.raises(PydanticValidationError):
            RateAdjustment(type=AdjustmentType.FIXED, value=-1)
        with pytest.raises(PydanticValidationError):
            RateAdjustment(type=AdjustmentType.MULTIPLIER, value=-0.5)

    def test_max_users_zero_is_a_real_bound(self):
        empty = rule("empty", ConditionType.USER_COUNT, {"max_users": 0}, value=100)
        settings = settings_with(empty)
        assert resolve_rate(5000, MONDAY, "lunch", settings, [], user_count=0).final_rate_cents == 100
        assert resolve_rate(5000, MONDAY, "lunch", settings, [], user_count=3).final_rate_cents == 5000
        with pytest.raises(PydanticValidationError):
            ConditionParams(min_users=5, max_users=2)

    def test_round_cents_half_up(self):
        assert round_cents(Decimal("2.5")) == 3
        assert round_cents(Decimal("3.5")) == 4
        assert round_cents(Decimal("2.49")) == 2


class TestRateService:
    """费率服务：基础价和预览"""

    def test_base_rate_prefers_month_settings(self, services, actors):
        services.policy.update_settings({"default_rates": {"lunch": 4000, "dinner": 3000}},
                                        actors["admin"])
        assert services.rates.base_rate_for(MONDAY, "lunch") == 4000
        services.months.configure(actors["manager"], MonthConfigureRequest(
            year=2024, month=3, lunch_rate_cents=5000, dinner_rate_cents=4500))
        assert services.rates.base_rate_for(MONDAY, "lunch") == 5000
        assert services.rates.base_rate_for(MONDAY, "dinner") == 4500

    def test_preview_applies_enabled_rules(self, services, actors):
        services.months.configure(actors["manager"], MonthConfigureRequest(
            year=2024, month=3, lunch_rate_cents=5000, dinner_rate_cents=4000))
        services.policy.add_rate_rule(RateRuleInput(
            name="sunday", condition_type=ConditionType.DAY_OF_WEEK,
            condition_params=ConditionParams(days=[0]),
            adjustment=RateAdjustment(type=AdjustmentType.PERCENTAGE, value=10),
        ), actors["admin"])
        assert services.rates.preview_rate(SUNDAY, "lunch").final_rate_cents == 5000
        services.policy.set_rate_rules_enabled(True, actors["admin"])
        preview = services.rates.preview_rate(SUNDAY, "lunch")
        assert preview.base_rate_cents == 5000
        assert preview.final_rate_cents == 5500
        assert len(preview.applied_rules) == 1
