"""
日历工具
纯日期计算：生成闭区间日期序列、归一化到日、星期/周六序号判断、自然月窗口
"""

import calendar
import math
from datetime import date, datetime, timedelta
from typing import Iterator, Tuple, Union

from ..core.exceptions import PolicyError, ValidationError

DateLike = Union[date, datetime, str]


def normalize(value: DateLike) -> date:
    """将 date / datetime / ISO 字符串归一化为日期"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            raise ValidationError(f"日期格式错误: {value}", {"value": value})
    raise ValidationError(f"无法识别的日期: {value!r}")


def iter_dates(start: DateLike, end: DateLike) -> Iterator[date]:
    """闭区间 [start, end] 的逐日迭代；start 晚于 end 时为空"""
    current = normalize(start)
    last = normalize(end)
    while current <= last:
        yield current
        current += timedelta(days=1)


def span_days(start: DateLike, end: DateLike) -> int:
    """闭区间天数"""
    return (normalize(end) - normalize(start)).days + 1


def validate_range(start: DateLike, end: DateLike, max_days: int) -> Tuple[date, date]:
    """校验区间顺序和长度，返回归一化后的 (start, end)"""
    s, e = normalize(start), normalize(end)
    if s > e:
        raise ValidationError("开始日期不能晚于结束日期", {"start": s.isoformat(), "end": e.isoformat()})
    days = span_days(s, e)
    if days > max_days:
        raise PolicyError(
            "range_too_large",
            f"日期范围最多 {max_days} 天",
            {"days": days, "max_days": max_days},
        )
    return s, e


def weekday_sun0(d: date) -> int:
    """星期编号，0=周日 ... 6=周六"""
    return (d.weekday() + 1) % 7


def saturday_ordinal(d: date) -> int:
    """当月第几个同星期日（对周六即第几个周六）"""
    return math.ceil(d.day / 7)


def is_odd_saturday(d: date) -> bool:
    return weekday_sun0(d) == 6 and saturday_ordinal(d) % 2 == 1


def is_even_saturday(d: date) -> bool:
    return weekday_sun0(d) == 6 and saturday_ordinal(d) % 2 == 0


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """自然月的第一天和最后一天"""
    if month < 1 or month > 12:
        raise ValidationError(f"月份必须在 1-12 之间: {month}")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)
