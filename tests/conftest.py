from concurrent.futures import Executor, Future
from datetime import datetime, timedelta
from typing import Generator
from unittest.mock import Mock

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from main import create_app
from r2s_auth.core.cache import CacheManager
from r2s_auth.core.config import Settings
from r2s_auth.core.timeutils import utc_now
from r2s_auth.db.session import init_db, make_session_factory
from r2s_auth.services.auth_service import AuthService
from r2s_auth.services.line_client import LineClient


TEST_ACCESS_SECRET = "test-access-secret-0123456789abcdef0123456789"
TEST_REFRESH_SECRET = "test-refresh-secret-fedcba9876543210fedcba987"


class ImmediateExecutor(Executor):
    """Runs submitted work inline so background touches are observable in tests"""

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class HoldingExecutor(Executor):
    """Accepts work but never runs it, so queued touches stay pending"""

    def __init__(self):
        self.pending = []

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        self.pending.append(future)
        return future


class FakeClock:
    """Callable clock that starts at the real time and only moves when told to"""

    def __init__(self, start: datetime | None = None):
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def sign_message(account, message: str) -> str:
    """personal_sign ``message`` the way a browser wallet does"""
    signed = account.sign_message(encode_defunct(text=message))
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite:///:memory:",
        REDIS_HOST=None,
        JWT_SECRET=TEST_ACCESS_SECRET,
        JWT_REFRESH_SECRET=TEST_REFRESH_SECRET,
        LINE_CHANNEL_ID="1653000000",
        MAX_SESSIONS_PER_USER=0,
    )


@pytest.fixture
def engine():
    """In-memory SQLite database shared by every connection of the test"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def cache(settings) -> CacheManager:
    return CacheManager(settings)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def line_client() -> Mock:
    return Mock(spec=LineClient)


@pytest.fixture
def auth_service(settings, session_factory, cache, clock, line_client) -> Generator:
    service = AuthService.from_settings(
        settings,
        session_factory,
        cache,
        line_client=line_client,
        clock=clock,
        executor=ImmediateExecutor(),
    )
    yield service
    service.close()


@pytest.fixture
def client(settings, auth_service) -> Generator:
    """Create a test client for the FastAPI application"""
    app = create_app(settings, auth_service=auth_service)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def wallet():
    """A fresh secp256k1 account able to sign challenges"""
    return Account.create()


@pytest.fixture
def login(auth_service, wallet):
    """Run the full challenge/sign/verify flow and return the LoginResult"""

    def _login(account=None, ip="203.0.113.7", user_agent="pytest"):
        account = account or wallet
        issued = auth_service.issue_challenge(account.address, "1001")
        return auth_service.verify_and_login(
            account.address,
            sign_message(account, issued.message),
            issued.message,
            issued.request_id,
            ip=ip,
            user_agent=user_agent,
        )

    return _login
