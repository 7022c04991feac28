"""
日志配置
业务审计写入 audit_logs 表；这里只负责进程日志流的格式和级别
"""

import logging

from ..config.settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = None):
    """按配置初始化根日志器，重复调用只会更新级别"""
    root = logging.getLogger()
    resolved = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(resolved)
    logging.getLogger("mealledger").setLevel(resolved)
