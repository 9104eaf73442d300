"""
测试公共夹具：内存 SQLite、低成本 bcrypt、可编排回复的假大模型客户端
"""
import os

# 必须在导入 app 之前设置，避免模块级引擎指向文件数据库
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LLM_API_KEY"] = ""

import httpx
import pytest
from fastapi import Depends

from app.api.deps import get_auth_service
from app.core.database import build_engine, build_session_factory, get_db, get_session_factory, init_db
from app.main import app
from app.services.auth_service import AuthService
from app.services.llm_service import get_llm_client

TEST_SECRET = "test-secret-key"
TEST_BCRYPT_ROUNDS = 4


class FakeLLM:
    """按顺序返回预设回复的假客户端；预设为异常时直接抛出"""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def complete(self, messages, temperature=0.7, max_tokens=2000):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if not self.responses:
            raise AssertionError("unexpected LLM call")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
async def engine():
    test_engine = build_engine("sqlite+aiosqlite:///:memory:")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def auth_service(db):
    return AuthService(db, secret_key=TEST_SECRET, bcrypt_rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
async def client(session_factory, fake_llm):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    def override_get_auth_service(db=Depends(get_db)):
        return AuthService(db, secret_key=TEST_SECRET, bcrypt_rounds=TEST_BCRYPT_ROUNDS)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_auth_service] = override_get_auth_service
    app.dependency_overrides[get_llm_client] = lambda: fake_llm

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


async def register_user(client, username="alice", email="alice@example.com", password="secret123"):
    resp = await client.post(
        "/api/auth/register",
        json={"username": username, "email": email, "password": password},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
