"""
测试配置文件
内存数据库 + 固定时钟 + 每种角色一个用户
"""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from ..app import create_app
from ..core.clock import FixedClock
from ..core.database import DatabaseManager
from ..models.user import Actor, Role, UserCreate
from ..repositories import UserRepository
from ..services import ServiceContainer, get_services

TZ = ZoneInfo("Asia/Dhaka")

# 2024-03-13 是周三；2024年3月的周五为 1/8/15/22/29，周六为 2/9/16/23/30
NOW = datetime(2024, 3, 13, 9, 0, tzinfo=TZ)


def at(year, month, day, hour=9, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=TZ)


def headers(actor: Actor):
    return {"X-User-Id": str(actor.user_id), "X-User-Role": actor.role.value}


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def test_db():
    db = DatabaseManager(":memory:")
    db.init_database()
    yield db
    db.close()


@pytest.fixture
def services(test_db, clock):
    return ServiceContainer(test_db, clock)


@pytest.fixture
def actors(test_db):
    """user / other 为普通用户，其余各一个角色"""
    repo = UserRepository(test_db)
    result = {}
    for name, role in [
        ("user", Role.USER),
        ("other", Role.USER),
        ("manager", Role.MANAGER),
        ("admin", Role.ADMIN),
        ("superadmin", Role.SUPERADMIN),
    ]:
        user = repo.create(UserCreate(name=name, role=role))
        result[name] = Actor(user_id=user.id, role=role)
    return result


@pytest.fixture
def client(services):
    app = create_app()
    app.dependency_overrides[get_services] = lambda: services
    return TestClient(app)
