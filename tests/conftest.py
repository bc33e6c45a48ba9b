# tests/conftest.py
"""
Shared fixtures for the identity bridge tests.

Provides settings with test key material, a controllable clock, a fake
identity backend and TestClients for production and local development
mode.
"""

import os
import tempfile
import time

# Keep test runs from writing into the working directory
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="idbridge-logs-"))

import pytest
from fastapi.testclient import TestClient
from typing import Dict, List, Tuple

from idbridge.core.config import Settings
from idbridge.core.security.cookie_codec import CookieCodec
from idbridge.main import create_app, limiter
from idbridge.services.identity_service import IdentityBackend

TEST_SECRET = "test-secret-for-the-identity-bridge-0123456789"
COOKIE_NAME = "bridge_session"
DURATION = 3600

VALID_EMAIL = "alice@example.com"
VALID_PASSWORD = "correct horse battery"


class FakeClock:
    """Clock that only moves when told to"""

    def __init__(self, now: float = None):
        self.now = time.time() if now is None else now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend(IdentityBackend):
    """Records every call so tests can assert handlers never ran"""

    name = "fake"

    def __init__(self):
        self.authenticate_calls: List[Tuple[str, str]] = []
        self.certify_calls: List[Tuple[str, object, int]] = []

    async def authenticate(self, email: str, password: str) -> bool:
        self.authenticate_calls.append((email, password))
        return email == VALID_EMAIL and password == VALID_PASSWORD

    async def certify(self, email, pubkey, duration):
        self.certify_calls.append((email, pubkey, duration))
        return f"cert-for-{email}-{duration}"


def make_settings(**overrides) -> Settings:
    values = {
        "SESSION_SECRET": TEST_SECRET,
        "SESSION_DURATION_SECONDS": DURATION,
        "SECURITY_MODE": "production",
        "_env_file": None,
    }
    values.update(overrides)
    return Settings(**values)


def parse_set_cookie(header: str) -> Tuple[str, str, Dict[str, object]]:
    """Split a Set-Cookie value into (name, value, {lowercased attribute: value or True})"""
    first, *attributes = [part.strip() for part in header.split(";")]
    name, _, value = first.partition("=")
    attrs: Dict[str, object] = {}
    for attribute in attributes:
        key, sep, attr_value = attribute.partition("=")
        attrs[key.lower()] = attr_value if sep else True
    return name, value, attrs


def session_cookie_header(response) -> str:
    """The session's Set-Cookie header from a response (fails if absent)"""
    for header in response.headers.get_list("set-cookie"):
        if header.startswith(f"{COOKIE_NAME}="):
            return header
    raise AssertionError("response did not set the session cookie")


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """slowapi keeps counters in memory across apps"""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def dev_settings():
    return make_settings(SECURITY_MODE="local_development")


@pytest.fixture
def codec(clock):
    return CookieCodec.from_secret(TEST_SECRET, clock=clock)


@pytest.fixture
def app(settings, backend, clock):
    return create_app(settings, backend=backend, clock=clock)


@pytest.fixture
def client(app):
    # Production cookies are Secure, so the client has to speak https to send them back
    return TestClient(app, base_url="https://testserver")


@pytest.fixture
def dev_app(dev_settings, backend, clock):
    return create_app(dev_settings, backend=backend, clock=clock)


@pytest.fixture
def dev_client(dev_app):
    return TestClient(dev_app)


def fetch_csrf_token(client: TestClient) -> str:
    """Load a page that embeds a CSRF token for the client's current session"""
    response = client.get("/api/session_context")
    assert response.status_code == 200
    return response.json()["csrf_token"]
