"""
开发环境启动入口：python -m mealledger
"""

import uvicorn

from .config.settings import settings


def main():
    uvicorn.run("mealledger.app:app", host="0.0.0.0", port=8000, reload=settings.debug)


if __name__ == "__main__":
    main()
