import datetime as dt
import os
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from tortoise import Tortoise

from storefront.api.v1 import deps
from storefront.config import settings
from storefront.core import clock
from storefront.core import db as db_module
from storefront.core.security import hash_password
from storefront.main import app
from storefront.models.user import Role, User
from storefront.services.auth import AuthService
from storefront.services.notifier import Notifier
from storefront.services.otp import OtpService


TEST_DB_URL = "sqlite://:memory:"
os.environ["DATABASE_URL"] = TEST_DB_URL
db_module.DB_URL = TEST_DB_URL
db_module.TORTOISE_ORM["connections"]["default"] = TEST_DB_URL

FIXED_OTP = "123456"
WRONG_OTP = "654321"
START = dt.datetime(2026, 3, 1, 12, 0, 0, tzinfo=dt.timezone.utc)


class FrozenClock:
    """Stand-in for `clock.utc_now` that only moves when told to."""

    def __init__(self, now: dt.datetime):
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **delta) -> dt.datetime:
        self.now = self.now + dt.timedelta(**delta)
        return self.now


class RecordingNotifier(Notifier):
    """Keeps every email in memory instead of sending it."""

    def __init__(self):
        self.sent: list[tuple[str, object, dict]] = []

    async def send(self, to_email, kind, params):
        self.sent.append((to_email, kind, dict(params)))

    def kinds_for(self, email: str) -> list:
        return [kind for to, kind, _ in self.sent if to == email]


async def _init_test_db() -> None:
    """
    Initialize a clean in-memory SQLite database for every test.
    Ensures tables are recreated from scratch.
    """
    if Tortoise._inited:
        await Tortoise.close_connections()
    await Tortoise.init(config=db_module.TORTOISE_ORM)
    await Tortoise.generate_schemas()


@pytest.fixture
def frozen_clock(monkeypatch):
    """Freeze `clock.utc_now` at START; call `.advance(...)` to move it."""
    fake = FrozenClock(START)
    monkeypatch.setattr(clock, "utc_now", fake)
    return fake


@pytest_asyncio.fixture
async def db():
    await _init_test_db()
    yield
    await Tortoise.close_connections()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def otp_service():
    """OTP engine with a deterministic code."""
    return OtpService(code_factory=lambda length: FIXED_OTP)


@pytest.fixture
def auth_service(otp_service, notifier):
    return AuthService(config=settings, otp=otp_service, notifier=notifier)


@pytest_asyncio.fixture
async def client(db, auth_service):
    """
    Provide an HTTPX AsyncClient bound to the FastAPI app with a fresh DB.
    """
    app.dependency_overrides[deps.auth_service] = lambda: auth_service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def create_user(db):
    """
    Factory fixture to create users directly via ORM.
    """

    async def _create_user(
        email: str | None = None,
        password: str = "UserPass!23",
        verified: bool = True,
        role: Role = Role.USER,
    ) -> tuple[User, str]:
        tag = uuid.uuid4().hex[:6]
        user = await User.create(
            public_id=f"USR-1700000000-{tag.upper()}",
            first_name="Test",
            last_name="User",
            username=f"user_{tag}",
            email=email or f"{tag}@mail.com",
            password_hash=hash_password(password),
            role=role,
            email_verified=verified,
        )
        return user, password

    return _create_user


@pytest_asyncio.fixture
async def auth_header_factory(client):
    """
    Helper fixture to obtain Authorization headers via the login endpoint.
    """

    async def _get_headers(email: str, password: str) -> dict[str, str]:
        resp = await client.post(
            "/api/v1/auth/login",
            json={"email": email, "password": password},
        )
        assert resp.status_code == 200, resp.text
        token = resp.json()["data"]["accessToken"]
        return {"Authorization": f"Bearer {token}"}

    return _get_headers
