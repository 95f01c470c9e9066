import time

import jwt
import pytest
from fastapi.testclient import TestClient

from devicelink.core.config import Settings
from devicelink.main import create_app
from devicelink.services.container import build_services
from devicelink.services.handoff import ApproverIdentity

START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock the tests move by hand."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    s = Settings()
    s.STORE_BACKEND = "memory"
    s.MOBILE_JWT_SECRET = "test-mobile-secret-0123456789abcdef"
    s.WEB_SESSION_SECRET = "test-web-session-secret-0123456789ab"
    s.PAIRING_SESSION_TTL_SECONDS = 300
    s.QR_SESSION_TTL_SECONDS = 300
    s.QR_PROVIDERS = ["google", "discord"]
    s.QR_DEVICE_TYPES = ["tv", "androidtv", "mobile", "tablet", "desktop"]
    s.ADMIN_USER_EMAILS = ["boss@example.com"]
    s.PUBLIC_BASE_URL = None
    return s


@pytest.fixture
def services(settings, clock):
    svc = build_services(settings, clock=clock)
    svc.users.add_user("u1", "a@b.com", name="Alice", image="", approved=True, limitedAccess=False)
    svc.users.add_user("u2", "c@d.com", name="Carol", approved=False, limitedAccess=True)
    svc.users.add_user("u3", "boss@example.com", name="Boss", approved=False)
    return svc


@pytest.fixture
def alice(services):
    return ApproverIdentity(user=services.users.get_user("u1"), provider="google")


@pytest.fixture
def carol(services):
    return ApproverIdentity(user=services.users.get_user("u2"), provider="discord")


@pytest.fixture
def client(settings, services):
    app = create_app(settings, services)
    return TestClient(app)


def make_web_session_token(settings, user_id: str, provider: str, exp_seconds: int = 900) -> str:
    """Signs the approving device's web session the way the federated login does."""
    now = int(time.time())
    payload = {
        "iss": settings.WEB_SESSION_ISSUER,
        "aud": settings.WEB_SESSION_AUDIENCE,
        "iat": now,
        "nbf": now,
        "exp": now + exp_seconds,
        "sub": user_id,
        "provider": provider,
    }
    return jwt.encode(payload, settings.WEB_SESSION_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def approver_headers(settings):
    def _headers(user_id: str = "u1", provider: str = "google") -> dict:
        token = make_web_session_token(settings, user_id, provider)
        return {"Authorization": f"Bearer {token}"}
    return _headers
