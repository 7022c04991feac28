from datetime import date

import pytest
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from ..models.policy import (
    AdjustmentType,
    ConditionType,
    ConditionParams,
    RateAdjustment,
    RateRuleInput,
    RateRuleUpdate,
)
from ..services.policy_service import deep_merge


def weekend_rule(**overrides):
    data = dict(
        name="weekend surcharge",
        priority=10,
        condition_type=ConditionType.DAY_OF_WEEK,
        condition_params=ConditionParams(days=[0, 6]),
        adjustment=RateAdjustment(type=AdjustmentType.PERCENTAGE, value=20),
    )
    data.update(overrides)
    return RateRuleInput(**data)


class TestPolicyService:
    """策略存储测试"""

    def test_defaults_created_lazily(self, services):
        settings = services.policy.get_settings()
        assert settings.version == 1
        assert settings.weekend_policy.off_weekdays == [5]
        assert settings.weekend_policy.odd_saturday_off is True
        assert settings.cutoff_times.lunch == 10
        assert settings.cutoff_times.dinner == 16
        assert settings.rate_rules.enabled is False

    def test_update_deep_merges_and_bumps_version(self, services, actors):
        updated = services.policy.update_settings({"cutoff_times": {"lunch": 9}}, actors["admin"])
        assert updated.cutoff_times.lunch == 9
        assert updated.cutoff_times.dinner == 16
        assert updated.version == 2
        assert updated.modified_by == actors["admin"].user_id

    def test_update_rejects_invalid_values(self, services, actors):
        with pytest.raises(ValidationError):
            services.policy.update_settings({"weekend_policy": {"off_weekdays": [7]}}, actors["admin"])
        assert services.policy.get_settings().version == 1

    def test_update_rejects_unknown_sections(self, services, actors):
        with pytest.raises(ValidationError):
            services.policy.update_settings({"version": 99}, actors["admin"])

    def test_update_requires_admin(self, services, actors):
        with pytest.raises(PermissionDeniedError):
            services.policy.update_settings({"cutoff_times": {"lunch": 9}}, actors["manager"])

    def test_stale_version_is_rejected(self, services, actors):
        doc = services.policy.get_settings().document()
        services.policy.update_settings({"cutoff_times": {"lunch": 9}}, actors["admin"])
        assert services.policy.policies.save(doc, 1, actors["admin"].user_id) is None

    def test_policy_changes_are_audited(self, services, actors):
        services.policy.update_settings({"default_rates": {"lunch": 6000}}, actors["admin"])
        entries = services.policy.audit.for_entity("policy", "global")
        assert entries[-1].action == "update"
        assert entries[-1].before["default_rates"]["lunch"] == 0
        assert entries[-1].after["default_rates"]["lunch"] == 6000

    def test_rate_rule_lifecycle(self, services, actors):
        rule = services.policy.add_rate_rule(weekend_rule(), actors["admin"])
        assert rule.id
        assert services.policy.get_rate_rule(rule.id).name == "weekend surcharge"

        updated = services.policy.update_rate_rule(
            rule.id, RateRuleUpdate(priority=5, valid_from=date(2024, 1, 1)), actors["admin"])
        assert updated.priority == 5
        assert updated.valid_from == date(2024, 1, 1)
        assert updated.condition_params.days == [0, 6]

        toggled = services.policy.toggle_rate_rule(rule.id, actors["admin"])
        assert toggled.is_active is False

        services.policy.delete_rate_rule(rule.id, actors["admin"])
        assert services.policy.list_rate_rules() == []
        with pytest.raises(NotFoundError):
            services.policy.get_rate_rule(rule.id)

    def test_rule_validity_window_must_be_ordered(self):
        with pytest.raises(PydanticValidationError):
            weekend_rule(valid_from=date(2024, 2, 1), valid_until=date(2024, 1, 1))

    def test_deep_merge_replaces_lists(self):
        base = {"a": {"b": 1, "c": [1, 2]}, "d": 1}
        merged = deep_merge(base, {"a": {"c": [3]}})
        assert merged == {"a": {"b": 1, "c": [3]}, "d": 1}
        assert base["a"]["c"] == [1, 2]
