"""
时钟抽象
所有需要“现在”的判断（截止时间、是否未来日期、当前月份）都通过注入的 Clock 获取，
测试中使用 FixedClock 固定时间
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from zoneinfo import ZoneInfo

from ..config.settings import settings


class Clock(ABC):
    """时钟接口"""

    @abstractmethod
    def now(self) -> datetime:
        """返回带时区的当前时间"""
        ...

    def today(self) -> date:
        return self.now().date()

    def local_now(self) -> datetime:
        """去掉时区信息的本地时间，用于写入 TIMESTAMP 列"""
        return self.now().replace(tzinfo=None)


class SystemClock(Clock):
    """生产环境时钟，按配置的时区返回系统时间"""

    def __init__(self, tz: str = None):
        self.tz = ZoneInfo(tz or settings.timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock(Clock):
    """固定时间时钟（测试用）"""

    def __init__(self, fixed: datetime):
        self._now = fixed

    def now(self) -> datetime:
        return self._now

    def set(self, fixed: datetime):
        self._now = fixed
