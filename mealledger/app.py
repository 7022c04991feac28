"""
餐次资格与计费账本服务 - 主应用入口

主要功能模块：
- 按策略（周末、节假日）推导每日用餐资格，支持用户切换和管理员份数调整
- 月度账期配置、结账和结转
- 按余额类型（早餐/午餐/晚餐）记账，冲正、更正和冻结
- 费率规则解析和月度账单汇总

技术栈：FastAPI + DuckDB + pydantic
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError

from .core.database import db_manager
from .core.exceptions import BaseApplicationError
from .core.error_handler import (
    application_error_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler
)
from .core.logging import configure_logging
from .config.settings import settings
from .api import api_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    configure_logging()
    db_manager.init_database()
    logger.info("database initialized")

    yield

    db_manager.close()


def create_app() -> FastAPI:
    """创建FastAPI应用"""
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="餐次资格与计费账本API",
        debug=settings.debug,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 注册异常处理器
    app.add_exception_handler(BaseApplicationError, application_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health_check():
        try:
            db_manager.execute_one("SELECT 1")
        except BaseApplicationError as e:
            return {
                "status": "unhealthy",
                "version": settings.api_version,
                "database": f"error: {e.message}"
            }
        return {
            "status": "healthy",
            "version": settings.api_version,
            "database": "connected"
        }

    @app.get("/")
    async def root():
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "description": "餐次资格与计费账本API"
        }

    return app


# 应用实例
app = create_app()
