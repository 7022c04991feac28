from datetime import date

import pytest

from ..core.exceptions import PermissionDeniedError, PolicyError, ValidationError
from ..models.holiday import HolidayCreate, HolidayType
from ..models.meal import StatusSource
from ..models.month import MonthConfigureRequest
from .conftest import at

MONDAY = date(2024, 3, 18)
FRIDAY = date(2024, 3, 15)
TODAY = date(2024, 3, 13)


class TestDefaultStatus:
    """默认状态推导"""

    def test_weekday_defaults_on(self, services, actors):
        status = services.eligibility.get_status(actors["user"].user_id, MONDAY, "lunch")
        assert status.is_on is True
        assert status.count == 1
        assert status.source == StatusSource.DEFAULT

    def test_friday_defaults_off(self, services, actors):
        status = services.eligibility.get_status(actors["user"].user_id, FRIDAY, "dinner")
        assert status.is_on is False
        assert status.count == 0
        assert status.reason == "weekend"

    def test_odd_saturdays_off_even_saturdays_on(self, services):
        assert services.eligibility.default_off(date(2024, 3, 2)).is_off
        assert not services.eligibility.default_off(date(2024, 3, 9)).is_off
        assert services.eligibility.default_off(date(2024, 3, 16)).is_off
        assert not services.eligibility.default_off(date(2024, 3, 23)).is_off

    def test_holiday_policy_by_type(self, services, actors):
        services.holidays.add_holiday(
            HolidayCreate(date=date(2024, 3, 26), name="Independence Day"), actors["admin"])
        services.holidays.add_holiday(
            HolidayCreate(date=date(2024, 3, 27), name="Optional Day", type=HolidayType.OPTIONAL),
            actors["admin"])
        off = services.eligibility.default_off(date(2024, 3, 26))
        assert off.is_off and off.reason == "holiday:Independence Day"
        assert not services.eligibility.default_off(date(2024, 3, 27)).is_off

    def test_disabling_holiday_policy_turns_holidays_on(self, services, actors):
        services.holidays.add_holiday(
            HolidayCreate(date=date(2024, 3, 26), name="Independence Day"), actors["admin"])
        services.policy.update_settings({"holiday_policy": {"enabled": False}}, actors["admin"])
        assert not services.eligibility.default_off(date(2024, 3, 26)).is_off

    def test_policy_change_moves_weekend(self, services, actors):
        services.policy.update_settings({"weekend_policy": {"off_weekdays": [1]}}, actors["admin"])
        assert services.eligibility.default_off(MONDAY).is_off
        assert not services.eligibility.default_off(FRIDAY).is_off

    def test_default_status_is_deterministic(self, services, actors):
        uid = actors["user"].user_id
        first = services.eligibility.statuses(uid, date(2024, 3, 1), date(2024, 3, 31), "lunch")
        second = services.eligibility.statuses(uid, date(2024, 3, 1), date(2024, 3, 31), "lunch")
        assert first == second
        # 5 个周五 + 3 个单数周六
        assert sum(1 for s in first if not s.is_on) == 8

    def test_calendar_limits_range(self, services, actors):
        with pytest.raises(PolicyError) as exc:
            services.eligibility.get_calendar(actors["user"].user_id, date(2024, 3, 1), date(2024, 4, 15))
        assert exc.value.reason == "range_too_large"
        cal = services.eligibility.get_calendar(actors["user"].user_id, date(2024, 3, 1), date(2024, 3, 7))
        assert set(cal) == {"lunch", "dinner"}
        assert len(cal["lunch"]) == 7


class TestToggle:
    """切换和权限"""

    def test_manual_off_on_default_off_day_is_recorded_as_manual(self, services, actors):
        user = actors["user"]
        record = services.eligibility.toggle(user, user.user_id, FRIDAY, "lunch", False)
        assert record.is_manually_set is True
        assert record.is_on is False
        status = services.eligibility.get_status(user.user_id, FRIDAY, "lunch")
        assert status.source == StatusSource.MANUAL
        assert status.is_on is False

    def test_toggle_overwrites_existing_record(self, services, actors):
        user = actors["user"]
        first = services.eligibility.toggle(user, user.user_id, MONDAY, "lunch", False)
        second = services.eligibility.toggle(user, user.user_id, MONDAY, "lunch", True, "back on")
        assert second.meal_id == first.meal_id
        assert (second.is_on, second.count, second.notes) == (True, 1, "back on")
        assert second.updated_at is not None

    def test_user_cannot_toggle_other_user(self, services, actors):
        with pytest.raises(PermissionDeniedError):
            services.eligibility.toggle(actors["user"], actors["other"].user_id, MONDAY, "lunch", False)

    def test_user_cannot_toggle_past_date(self, services, actors):
        user = actors["user"]
        with pytest.raises(PolicyError) as exc:
            services.eligibility.toggle(user, user.user_id, date(2024, 3, 12), "lunch", False)
        assert exc.value.reason == "past_date"

    def test_cutoff_applies_only_to_today(self, services, actors, clock):
        user = actors["user"]
        services.eligibility.toggle(user, user.user_id, TODAY, "lunch", False)
        clock.set(at(2024, 3, 13, 10, 30))
        with pytest.raises(PolicyError) as exc:
            services.eligibility.toggle(user, user.user_id, TODAY, "lunch", True)
        assert exc.value.reason == "cutoff_passed"
        # 晚餐截止时间为 16 点
        services.eligibility.toggle(user, user.user_id, TODAY, "dinner", False)

    def test_manager_bypasses_cutoff_but_not_month_window(self, services, actors, clock):
        clock.set(at(2024, 3, 13, 18, 0))
        manager = actors["manager"]
        uid = actors["user"].user_id
        services.eligibility.toggle(manager, uid, TODAY, "lunch", False)
        services.eligibility.toggle(manager, uid, date(2024, 3, 1), "lunch", True)
        permission = services.eligibility.can_toggle(manager, uid, date(2024, 4, 2), "lunch")
        assert permission.can_toggle is False
        assert permission.reason == "not_current_month"
        assert services.eligibility.can_toggle(actors["admin"], uid, date(2024, 4, 2), "lunch").can_toggle

    def test_finalized_month_blocks_users_and_managers(self, services, actors):
        services.months.configure(actors["manager"], MonthConfigureRequest(
            year=2024, month=3, lunch_rate_cents=5000, dinner_rate_cents=4000))
        services.months.finalize(actors["manager"], 2024, 3)
        uid = actors["user"].user_id
        for role in ("user", "manager"):
            permission = services.eligibility.can_toggle(actors[role], uid, MONDAY, "lunch")
            assert permission.reason == "month_finalized"
        record = services.eligibility.toggle(actors["admin"], uid, MONDAY, "lunch", False)
        assert record.is_on is False
        record = services.eligibility.toggle(actors["superadmin"], uid, MONDAY, "lunch", True)
        assert record.is_on is True

    def test_set_count(self, services, actors):
        uid = actors["user"].user_id
        services.eligibility.set_count(actors["manager"], uid, MONDAY, "lunch", 3, "guests")
        status = services.eligibility.get_status(uid, MONDAY, "lunch")
        assert (status.is_on, status.count, status.source) == (True, 3, StatusSource.MANUAL)
        services.eligibility.set_count(actors["manager"], uid, MONDAY, "lunch", 0)
        assert services.eligibility.get_status(uid, MONDAY, "lunch").is_on is False

    def test_set_count_requires_manager_and_non_negative(self, services, actors):
        uid = actors["user"].user_id
        with pytest.raises(PermissionDeniedError):
            services.eligibility.set_count(actors["user"], uid, MONDAY, "lunch", 2)
        with pytest.raises(ValidationError):
            services.eligibility.set_count(actors["manager"], uid, MONDAY, "lunch", -1)

    def test_toggle_is_audited(self, services, actors):
        user = actors["user"]
        services.eligibility.toggle(user, user.user_id, MONDAY, "lunch", False)
        entries = services.eligibility.audit.for_entity("meal", f"{user.user_id}:{MONDAY.isoformat()}:lunch")
        assert [e.action for e in entries] == ["toggle"]
        assert entries[0].before is None
        assert entries[0].after["is_on"] is False

    def test_meal_audit_log(self, services, actors):
        user = actors["user"]
        services.eligibility.toggle(user, user.user_id, MONDAY, "lunch", False)
        services.eligibility.toggle(user, user.user_id, MONDAY, "lunch", True)
        services.eligibility.set_count(actors["manager"], actors["other"].user_id, MONDAY, "dinner", 2)

        page = services.eligibility.audit_log(user)
        assert page.total == 2
        # 最新的在前
        assert [e.after["is_on"] for e in page.items] == [True, False]
        assert page.items[0].before["is_on"] is False

        assert services.eligibility.audit_log(actors["manager"]).total == 3
        dinner = services.eligibility.audit_log(actors["manager"], meal_type="dinner")
        assert [e.user_id for e in dinner.items] == [actors["other"].user_id]
        in_range = services.eligibility.audit_log(actors["manager"], start=date(2024, 3, 19),
                                                  end=date(2024, 3, 31))
        assert in_range.total == 0
        with pytest.raises(PermissionDeniedError):
            services.eligibility.audit_log(user, actors["other"].user_id)


class TestBulkAndRoster:
    """批量切换和每日名单"""

    def test_bulk_toggle_reports_each_date(self, services, actors):
        user = actors["user"]
        result = services.eligibility.bulk_toggle(user, user.user_id, date(2024, 3, 11),
                                                  date(2024, 3, 17), "dinner", False)
        assert result.applied == [date(2024, 3, d) for d in range(13, 18)]
        assert [(s.date, s.reason) for s in result.skipped] == [
            (date(2024, 3, 11), "past_date"),
            (date(2024, 3, 12), "past_date"),
        ]

    def test_bulk_toggle_rejects_long_range(self, services, actors):
        user = actors["user"]
        with pytest.raises(PolicyError):
            services.eligibility.bulk_toggle(user, user.user_id, date(2024, 3, 13),
                                             date(2024, 4, 30), "dinner", False)

    def test_daily_roster(self, services, actors):
        user = actors["user"]
        services.eligibility.toggle(user, user.user_id, MONDAY, "lunch", False)
        services.eligibility.set_count(actors["manager"], actors["other"].user_id, MONDAY, "lunch", 2)
        roster = services.eligibility.daily_roster(actors["manager"], MONDAY, "lunch")
        assert len(roster.entries) == 5
        # 5 个用户：一人关闭，一人 2 份，其余默认各 1 份
        assert roster.total_count == 2 + 3
        with pytest.raises(PermissionDeniedError):
            services.eligibility.daily_roster(user, MONDAY, "lunch")
