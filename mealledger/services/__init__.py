"""
Business logic services.
ServiceContainer wires every service over one DatabaseManager and one Clock.
"""

from typing import Optional

from ..core.clock import Clock, SystemClock
from ..core.database import DatabaseManager, db_manager
from .billing_service import BillingService
from .breakfast_service import BreakfastService
from .consistency_service import ConsistencyService
from .eligibility_service import EligibilityService
from .holiday_service import HolidayService
from .ledger_service import LedgerService
from .month_service import MonthService
from .policy_service import PolicyService
from .rate_service import RateService
from .user_service import UserService


class ServiceContainer:
    """按依赖顺序构建全部服务"""

    def __init__(self, db: Optional[DatabaseManager] = None, clock: Optional[Clock] = None,
                 max_range_days: Optional[int] = None):
        self.db = db or db_manager
        self.clock = clock or SystemClock()

        self.users = UserService(self.db)
        self.holidays = HolidayService(self.db)
        self.policy = PolicyService(self.db)
        self.rates = RateService(self.policy, self.holidays)
        self.eligibility = EligibilityService(self.policy, self.holidays, self.db,
                                              clock=self.clock, max_range_days=max_range_days)
        self.ledger = LedgerService(self.db, clock=self.clock)
        self.months = MonthService(self.policy, self.eligibility, self.ledger, self.db,
                                   clock=self.clock, max_range_days=max_range_days)
        self.breakfasts = BreakfastService(self.ledger, self.db, clock=self.clock)
        self.billing = BillingService(self.eligibility, self.rates, self.months, self.ledger,
                                      self.breakfasts)
        self.consistency = ConsistencyService(self.db, clock=self.clock)


_container: Optional[ServiceContainer] = None


def get_services() -> ServiceContainer:
    """FastAPI 依赖：进程内共享的服务容器（测试中通过 dependency_overrides 替换）"""
    global _container
    if _container is None:
        _container = ServiceContainer()
    return _container


__all__ = [
    "BillingService",
    "BreakfastService",
    "ConsistencyService",
    "EligibilityService",
    "HolidayService",
    "LedgerService",
    "MonthService",
    "PolicyService",
    "RateService",
    "ServiceContainer",
    "UserService",
    "get_services",
]
