from datetime import date, datetime

import pytest

from ..core.exceptions import PolicyError, ValidationError
from ..utils.calendar import (
    is_even_saturday,
    is_odd_saturday,
    iter_dates,
    month_bounds,
    normalize,
    saturday_ordinal,
    span_days,
    validate_range,
    weekday_sun0,
)


class TestCalendar:
    """日历工具测试"""

    def test_normalize_accepts_date_datetime_and_string(self):
        assert normalize(date(2024, 3, 1)) == date(2024, 3, 1)
        assert normalize(datetime(2024, 3, 1, 23, 59)) == date(2024, 3, 1)
        assert normalize("2024-03-01") == date(2024, 3, 1)
        assert normalize("2024-03-01T10:00:00") == date(2024, 3, 1)

    def test_normalize_rejects_garbage(self):
        with pytest.raises(ValidationError):
            normalize("not-a-date")

    def test_iter_dates_is_inclusive(self):
        days = list(iter_dates(date(2024, 2, 27), date(2024, 3, 1)))
        assert days == [date(2024, 2, 27), date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)]
        assert span_days(date(2024, 2, 27), date(2024, 3, 1)) == 4

    def test_iter_dates_empty_when_reversed(self):
        assert list(iter_dates(date(2024, 3, 2), date(2024, 3, 1))) == []

    def test_validate_range(self):
        assert validate_range("2024-03-01", "2024-03-31", 31) == (date(2024, 3, 1), date(2024, 3, 31))
        with pytest.raises(ValidationError):
            validate_range(date(2024, 3, 2), date(2024, 3, 1), 31)
        with pytest.raises(PolicyError) as exc:
            validate_range(date(2024, 3, 1), date(2024, 4, 1), 31)
        assert exc.value.reason == "range_too_large"

    def test_weekday_numbering_starts_on_sunday(self):
        assert weekday_sun0(date(2024, 3, 3)) == 0   # 周日
        assert weekday_sun0(date(2024, 3, 1)) == 5   # 周五
        assert weekday_sun0(date(2024, 3, 2)) == 6   # 周六

    def test_saturday_parity(self):
        assert saturday_ordinal(date(2024, 3, 2)) == 1
        assert is_odd_saturday(date(2024, 3, 2))
        assert is_even_saturday(date(2024, 3, 9))
        assert is_odd_saturday(date(2024, 3, 16))
        assert is_even_saturday(date(2024, 3, 23))
        assert is_odd_saturday(date(2024, 3, 30))
        # 非周六两者都不成立
        assert not is_odd_saturday(date(2024, 3, 1))
        assert not is_even_saturday(date(2024, 3, 8))

    def test_month_bounds(self):
        assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
        assert month_bounds(2023, 2) == (date(2023, 2, 1), date(2023, 2, 28))
        with pytest.raises(ValidationError):
            month_bounds(2024, 13)
