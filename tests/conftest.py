"""
Pytest 配置和共享 fixtures
"""
import os

# 导入应用前设置：内存数据库、关闭定时任务
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("READER_API_KEY", "reader-test-key")

import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from core.notification import NotificationChannelRegistry
from roomkey.database import Base, get_db, SessionLocal
from roomkey.models import ontology  # noqa
from roomkey.models.ontology import Guest, Admin, Room, RoomStatus, RfidTag, RfidStatus
from roomkey.security.auth import create_access_token
from roomkey.services.event_bus import event_bus
from roomkey.services.event_handlers import event_handlers
from roomkey.main import app


class FrozenClock:
    """可控时钟，注入到服务的 clock 参数"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class EventRecorder:
    """记录发布的事件，替代全局事件总线"""

    def __init__(self):
        self.events = []

    def __call__(self, event) -> None:
        self.events.append(event)

    def types(self):
        return [e.event_type for e in self.events]

    def of(self, event_type):
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """绑定测试引擎的会话工厂（事件处理器 / 定时任务使用）"""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """创建数据库会话"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(db_session, db_engine):
    """创建测试客户端"""
    def override_get_db():
        yield db_session

    # 事件处理器与站内通知通过全局 SessionLocal 写库，指向测试引擎
    SessionLocal.configure(bind=db_engine)
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clean_event_bus():
    """每个测试结束后清理全局订阅与通知渠道"""
    yield
    event_handlers.unregister_handlers()
    event_bus.clear_subscribers()
    event_bus.clear_history()
    NotificationChannelRegistry().clear()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 3, 1, 14, 0, 0))


@pytest.fixture
def recorder():
    return EventRecorder()


# ============== 认证相关 Fixtures ==============

@pytest.fixture
def sample_admin(db_session):
    admin = Admin(name="Front Desk", email="desk@example.com", is_active=True)
    db_session.add(admin)
    db_session.commit()
    db_session.refresh(admin)
    return admin


@pytest.fixture
def admin_token(sample_admin):
    return create_access_token(sample_admin.id)


@pytest.fixture
def auth_headers(admin_token):
    """返回带认证的请求头"""
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def reader_headers():
    """读卡器请求头"""
    return {"X-API-Key": "reader-test-key"}


# ============== 实体相关 Fixtures ==============

@pytest.fixture
def sample_guest(db_session):
    guest = Guest(name="Alice Chen", email="alice@example.com", phone="13800138000",
                  password="hashed-secret", membership_level="gold")
    db_session.add(guest)
    db_session.commit()
    db_session.refresh(guest)
    return guest


@pytest.fixture
def other_guest(db_session):
    guest = Guest(name="Bob Li", email="bob@example.com", phone="13900139000",
                  password="hashed-secret-2")
    db_session.add(guest)
    db_session.commit()
    db_session.refresh(guest)
    return guest


@pytest.fixture
def sample_room(db_session):
    room = Room(room_number="101", floor=1, status=RoomStatus.AVAILABLE)
    db_session.add(room)
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture
def second_room(db_session):
    room = Room(room_number="102", floor=1, status=RoomStatus.AVAILABLE)
    db_session.add(room)
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture
def sample_tag(db_session):
    tag = RfidTag(rfid_uid="C1", status=RfidStatus.AVAILABLE)
    db_session.add(tag)
    db_session.commit()
    db_session.refresh(tag)
    return tag
