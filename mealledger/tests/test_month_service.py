from datetime import date

import pytest

from ..core.exceptions import NotFoundError, PermissionDeniedError, PolicyError, ValidationError
from ..models.meal import StatusSource
from ..models.month import MonthConfigureRequest, MonthForceUpdateRequest, MonthState

MONDAY = date(2024, 3, 18)


def configure_march(services, actor, lunch=5000, dinner=4000, **extra):
    return services.months.configure(actor, MonthConfigureRequest(
        year=2024, month=3, lunch_rate_cents=lunch, dinner_rate_cents=dinner, **extra))


class TestMonthLifecycle:
    """账期状态流转"""

    def test_unconfigured_month_is_a_preview(self, services, actors):
        services.policy.update_settings({"default_rates": {"lunch": 4200}}, actors["admin"])
        view = services.months.get_month(2024, 3)
        assert view.kind == "preview"
        assert view.state == MonthState.DRAFT
        assert (view.start_date, view.end_date) == (date(2024, 3, 1), date(2024, 3, 31))
        assert view.lunch_rate_cents == 4200
        assert services.months.list_months() == []

    def test_configure_then_update_open_month(self, services, actors):
        created = configure_march(services, actors["manager"])
        assert created.state == MonthState.OPEN
        updated = configure_march(services, actors["manager"], lunch=5500, notes="price up")
        assert updated.month_id == created.month_id
        assert updated.lunch_rate_cents == 5500
        actions = [e.action for e in services.months.audit.for_entity("month_settings", created.month_id)]
        assert actions == ["create", "update"]

    def test_custom_window_is_used_for_date_lookup(self, services, actors):
        configure_march(services, actors["manager"],
                        start_date=date(2024, 2, 26), end_date=date(2024, 3, 25))
        assert services.months.month_for_date(date(2024, 2, 27)).month == 3

    def test_configure_requires_manager(self, services, actors):
        with pytest.raises(PermissionDeniedError):
            configure_march(services, actors["user"])

    def test_finalize_blocks_further_configuration(self, services, actors):
        configure_march(services, actors["manager"])
        finalized = services.months.finalize(actors["manager"], 2024, 3)
        assert finalized.state == MonthState.FINALIZED
        assert finalized.finalized_by == actors["manager"].user_id
        with pytest.raises(PolicyError) as exc:
            configure_march(services, actors["manager"], lunch=9999)
        assert exc.value.reason == "month_finalized"
        with pytest.raises(PolicyError):
            services.months.finalize(actors["manager"], 2024, 3)

    def test_finalize_unconfigured_month_not_found(self, services, actors):
        with pytest.raises(NotFoundError):
            services.months.finalize(actors["manager"], 2024, 4)


class TestCarryForward:
    """结转"""

    def test_rejected_when_not_finalized(self, services, actors):
        configure_march(services, actors["manager"])
        with pytest.raises(PolicyError) as exc:
            services.months.carry_forward(actors["admin"], 2024, 3)
        assert exc.value.reason == "not_finalized"

    def test_one_zero_amount_entry_per_non_zero_balance(self, services, actors):
        uid = actors["user"].user_id
        services.ledger.deposit(actors["manager"], uid, "lunch", 500)
        configure_march(services, actors["manager"])
        services.months.finalize(actors["manager"], 2024, 3)

        report = services.months.carry_forward(actors["admin"], 2024, 3)
        assert [(e.user_id, e.balance_type, e.amount_cents) for e in report.entries] == [
            (uid, "lunch", 500)]
        assert report.failed == []
        assert report.users_processed == 5

        page = services.ledger.history(actors["manager"], uid, "lunch")
        assert page.total == 2
        note = services.ledger.get_transaction(report.entries[0].transaction_id)
        assert note.amount_cents == 0
        assert note.previous_balance_cents == note.new_balance_cents == 500
        assert services.ledger.get_balance(uid, "lunch").amount_cents == 500
        assert services.months.get_month(2024, 3).state == MonthState.CARRIED_FORWARD

    def test_only_once(self, services, actors):
        configure_march(services, actors["manager"])
        services.months.finalize(actors["manager"], 2024, 3)
        services.months.carry_forward(actors["admin"], 2024, 3)
        with pytest.raises(PolicyError) as exc:
            services.months.carry_forward(actors["admin"], 2024, 3)
        assert exc.value.reason == "already_carried_forward"

    def test_frozen_balance_is_still_noted(self, services, actors):
        uid = actors["user"].user_id
        services.ledger.deposit(actors["manager"], uid, "dinner", 300)
        services.ledger.freeze(actors["admin"], uid, "dinner", "audit")
        configure_march(services, actors["manager"])
        services.months.finalize(actors["manager"], 2024, 3)
        report = services.months.carry_forward(actors["admin"], 2024, 3)
        assert len(report.entries) == 1

    def test_requires_admin(self, services, actors):
        configure_march(services, actors["manager"])
        services.months.finalize(actors["manager"], 2024, 3)
        with pytest.raises(PermissionDeniedError):
            services.months.carry_forward(actors["manager"], 2024, 3)


class TestForceChanges:
    """超级管理员强制修改"""

    def test_force_update_finalized_month(self, services, actors):
        configure_march(services, actors["manager"])
        services.months.finalize(actors["manager"], 2024, 3)
        updated = services.months.force_update(
            actors["superadmin"], 2024, 3,
            MonthForceUpdateRequest(lunch_rate_cents=5200, reason="supplier invoice"))
        assert updated.lunch_rate_cents == 5200
        assert updated.is_finalized
        history = services.months.force_updates(2024, 3)
        assert [e.reason for e in history] == ["supplier invoice"]
        assert history[0].before["lunch_rate_cents"] == 5000

    def test_force_update_requires_reason_and_superadmin(self, services, actors):
        configure_march(services, actors["manager"])
        with pytest.raises(ValidationError):
            services.months.force_update(actors["superadmin"], 2024, 3,
                                         MonthForceUpdateRequest(lunch_rate_cents=1, reason="  "))
        with pytest.raises(PermissionDeniedError):
            services.months.force_update(actors["admin"], 2024, 3,
                                         MonthForceUpdateRequest(lunch_rate_cents=1, reason="x"))

    def test_force_update_with_nothing_to_change(self, services, actors):
        configure_march(services, actors["manager"])
        with pytest.raises(ValidationError):
            services.months.force_update(actors["superadmin"], 2024, 3,
                                         MonthForceUpdateRequest(reason="nothing"))

    def test_unfinalize_keeps_carry_forward_flag(self, services, actors):
        configure_march(services, actors["manager"])
        services.months.finalize(actors["manager"], 2024, 3)
        services.months.carry_forward(actors["admin"], 2024, 3)
        reopened = services.months.force_unfinalize(actors["superadmin"], 2024, 3, "wrong rate")
        assert reopened.is_finalized is False
        assert reopened.is_carried_forward is True
        configure_march(services, actors["manager"], lunch=4800)
        with pytest.raises(PolicyError) as exc:
            services.months.force_unfinalize(actors["superadmin"], 2024, 3, "again")
        assert exc.value.reason == "not_finalized"

    def test_unfinalize_requires_reason(self, services, actors):
        configure_march(services, actors["manager"])
        services.months.finalize(actors["manager"], 2024, 3)
        with pytest.raises(ValidationError):
            services.months.force_unfinalize(actors["superadmin"], 2024, 3, "")


class TestRecalculateAndReset:
    """重算和恢复默认"""

    def test_recalculate_materializes_defaults_and_keeps_manual(self, services, actors):
        configure_march(services, actors["manager"])
        user, other = actors["user"], actors["other"]
        services.eligibility.toggle(user, user.user_id, MONDAY, "lunch", True)
        services.policy.update_settings({"weekend_policy": {"off_weekdays": [1]}}, actors["admin"])

        report = services.months.recalculate(actors["manager"], 2024, 3)
        assert len(report.applied) == 31
        assert report.failed == []
        assert report.manual_records_kept == 1
        assert report.records_written == 31 * 2 * 5 - 1

        status = services.eligibility.get_status(other.user_id, MONDAY, "lunch")
        assert (status.is_on, status.source, status.reason) == (False, StatusSource.DEFAULT, "materialized")
        kept = services.eligibility.get_status(user.user_id, MONDAY, "lunch")
        assert (kept.is_on, kept.source) == (True, StatusSource.MANUAL)

    def test_recalculate_one_meal_type_for_one_user(self, services, actors):
        configure_march(services, actors["manager"])
        user, other = actors["user"], actors["other"]
        report = services.months.recalculate(actors["manager"], 2024, 3, meal_type="dinner",
                                             user_id=user.user_id)
        assert (report.meal_type, report.user_id) == ("dinner", user.user_id)
        assert report.records_written == 31
        assert services.eligibility.get_status(user.user_id, MONDAY, "dinner").reason == "materialized"
        assert services.eligibility.get_status(user.user_id, MONDAY, "lunch").reason is None
        assert services.eligibility.get_status(other.user_id, MONDAY, "dinner").reason is None

        both = services.months.recalculate(actors["manager"], 2024, 3, meal_type="both")
        assert both.meal_type is None
        assert both.records_written == 31 * 2 * 5
        with pytest.raises(ValidationError):
            services.months.recalculate(actors["manager"], 2024, 3, meal_type="breakfast")
        with pytest.raises(NotFoundError):
            services.months.recalculate(actors["manager"], 2024, 3, user_id=9999)

    def test_recalculate_rejected_on_finalized_month(self, services, actors):
        configure_march(services, actors["manager"])
        services.months.finalize(actors["manager"], 2024, 3)
        with pytest.raises(PolicyError) as exc:
            services.months.recalculate(actors["manager"], 2024, 3)
        assert exc.value.reason == "month_finalized"

    def test_reset_removes_manual_records(self, services, actors):
        user = actors["user"]
        services.eligibility.toggle(user, user.user_id, MONDAY, "lunch", False)
        services.eligibility.toggle(actors["other"], actors["other"].user_id, MONDAY, "lunch", False)
        report = services.months.reset_to_default(actors["admin"], date(2024, 3, 1), date(2024, 3, 31),
                                                  user_id=user.user_id)
        assert report.deleted == 1
        assert services.eligibility.get_status(user.user_id, MONDAY, "lunch").is_on is True
        assert services.eligibility.get_status(actors["other"].user_id, MONDAY, "lunch").is_on is False

    def test_reset_one_meal_type(self, services, actors):
        user = actors["user"]
        services.eligibility.toggle(user, user.user_id, MONDAY, "lunch", False)
        services.eligibility.toggle(user, user.user_id, MONDAY, "dinner", False)
        report = services.months.reset_to_default(actors["admin"], date(2024, 3, 1), date(2024, 3, 31),
                                                  meal_type="dinner")
        assert (report.deleted, report.meal_type) == (1, "dinner")
        assert services.eligibility.get_status(user.user_id, MONDAY, "dinner").is_on is True
        assert services.eligibility.get_status(user.user_id, MONDAY, "lunch").is_on is False

    def test_reset_blocked_by_finalized_month_and_long_range(self, services, actors):
        configure_march(services, actors["manager"])
        services.months.finalize(actors["manager"], 2024, 3)
        with pytest.raises(PolicyError) as exc:
            services.months.reset_to_default(actors["admin"], date(2024, 3, 20), date(2024, 3, 25))
        assert exc.value.reason == "month_finalized"
        with pytest.raises(PolicyError) as exc:
            services.months.reset_to_default(actors["admin"], date(2024, 4, 1), date(2024, 5, 31))
        assert exc.value.reason == "range_too_large"
