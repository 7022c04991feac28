"""
Data access layer.
One repository per entity over the shared DuckDB connection.
"""

from .audit_repository import AuditRepository
from .breakfast_repository import BreakfastRepository
from .holiday_repository import HolidayRepository
from .ledger_repository import LedgerRepository
from .meal_repository import MealRepository
from .month_repository import MonthRepository
from .policy_repository import PolicyRepository
from .user_repository import UserRepository

__all__ = [
    "AuditRepository",
    "BreakfastRepository",
    "HolidayRepository",
    "LedgerRepository",
    "MealRepository",
    "MonthRepository",
    "PolicyRepository",
    "UserRepository",
]
