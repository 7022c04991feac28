"""
API routes and endpoints.
"""

from fastapi import APIRouter
from .v1 import billing, breakfasts, holidays, ledger, meals, months, policy, users

api_router = APIRouter()

# 包含所有v1路由
api_router.include_router(users.router, prefix="/users", tags=["用户"])
api_router.include_router(meals.router, prefix="/meals", tags=["餐次"])
api_router.include_router(months.router, prefix="/months", tags=["月度账期"])
api_router.include_router(ledger.router, prefix="/ledger", tags=["账本"])
api_router.include_router(policy.router, prefix="/policy", tags=["策略"])
api_router.include_router(holidays.router, prefix="/holidays", tags=["节假日"])
api_router.include_router(billing.router, prefix="/billing", tags=["账单"])
api_router.include_router(breakfasts.router, prefix="/breakfasts", tags=["早餐"])
