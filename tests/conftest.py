import os

# app 모듈이 import 시점에 엔진과 설정을 만들기 때문에 먼저 지정
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_bootstrap.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("KAFKA_ENABLED", "false")

import pytest
import pytest_asyncio
from typing import AsyncGenerator, Optional
from fakeredis import FakeAsyncRedis
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.main import app
from app.core.config import settings
from app.database.mysql import Base, get_async_session
from app.database.redis import set_redis_client
from app.models.users import User
from app.utils.auth import create_access_token
from app.websockets.connection_manager import manager


class FakeWebSocket:
    """브로커 테스트용 WebSocket (보낸 프레임을 기록)"""

    def __init__(self, headers: Optional[dict] = None, query_params: Optional[dict] = None, fail: bool = False):
        self.headers = headers or {}
        self.query_params = query_params or {}
        self.fail = fail
        self.sent = []
        self.accepted = False
        self.closed = False
        self.close_code = None

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection reset by peer")
        self.sent.append(data)

    async def close(self, code: int = 1000):
        self.closed = True
        self.close_code = code

    def frames(self, frame_type: str):
        return [frame for frame in self.sent if frame.get("type") == frame_type]


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """테스트용 비동기 데이터베이스 엔진 생성 (동시 세션을 위해 파일 DB 사용)"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}",
        echo=False
    )

    # 테이블 생성
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """테스트용 데이터베이스 세션"""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis():
    client = FakeAsyncRedis(decode_responses=True)
    set_redis_client(client)
    yield client
    set_redis_client(None)
    await client.aclose()


@pytest_asyncio.fixture(autouse=True)
async def realtime(session_factory, fake_redis):
    """브로커를 테스트 DB에 연결하고 테스트가 끝나면 비움"""
    original_factory = manager.session_factory
    manager.reset()
    manager.configure(session_factory)
    yield manager
    await manager.drain()
    manager.reset()
    manager.configure(original_factory)


@pytest.fixture
def fast_retry(monkeypatch):
    monkeypatch.setattr(settings, "storage_retry_backoff", 0.0)


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """테스트용 HTTP 클라이언트"""

    async def override_get_async_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_async_session

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _create_user(session: AsyncSession, username: str, display_name: Optional[str], role: str = "user") -> User:
    user = User(username=username, display_name=display_name, role=role, is_active=True)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user_1(test_session) -> User:
    """테스트용 사용자 1"""
    return await _create_user(test_session, "alice", "Alice")


@pytest_asyncio.fixture
async def test_user_2(test_session) -> User:
    """테스트용 사용자 2"""
    return await _create_user(test_session, "bob", "Bob")


@pytest_asyncio.fixture
async def test_user_3(test_session) -> User:
    """테스트용 사용자 3 (표시 이름 없음)"""
    return await _create_user(test_session, "carol", None)


@pytest_asyncio.fixture
async def admin_user(test_session) -> User:
    return await _create_user(test_session, "admin", "Administrator", role="admin")


def _auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """사용자별 Authorization 헤더 생성 함수"""
    return _auth_headers


@pytest.fixture
def headers_user_1(test_user_1) -> dict:
    return _auth_headers(test_user_1)


@pytest.fixture
def headers_user_2(test_user_2) -> dict:
    return _auth_headers(test_user_2)


@pytest.fixture
def headers_user_3(test_user_3) -> dict:
    return _auth_headers(test_user_3)


@pytest.fixture
def make_websocket():
    """FakeWebSocket 생성 함수"""
    return FakeWebSocket
