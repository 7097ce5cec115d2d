"""
Pytest configuration and shared fixtures
"""
import os
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

# Settings are read once at import time
os.environ["ENVIRONMENT"] = "development"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["LOG_LEVEL"] = "WARNING"
for name in ("CLICKUP_API_TOKEN", "QONTO_API_KEY", "ANTHROPIC_API_KEY", "DATABASE_URL", "LOG_FILE"):
    os.environ.pop(name, None)

from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from margin_tracker.api import deps  # noqa: E402
from margin_tracker.db.session import get_db  # noqa: E402
from margin_tracker.main import app  # noqa: E402

TEST_USER_ID = "5f0c7a8e-1d2b-4c3a-9e8f-000000000001"
TEST_USER_EMAIL = "finance@tinkso.com"


class FakeResponse:
    """Just enough of ``requests.Response`` for the vendor clients."""

    def __init__(self, status_code: int = 200, payload: Any = None, content: bytes = b"",
                 reason: str = "OK"):
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.reason = reason

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        return self._payload


class FakeSession:
    """
    Stand-in for ``requests.Session``.

    Routes map ``(method, url suffix)`` to a FakeResponse or to a callable
    receiving the request kwargs. Every call is recorded in ``calls``.
    """

    def __init__(self, routes: Optional[Dict[Tuple[str, str], Any]] = None):
        self.routes = routes or {}
        self.calls: List[Dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        for (route_method, suffix), handler in self.routes.items():
            if route_method == method and url.endswith(suffix):
                return handler(**kwargs) if callable(handler) else handler
        return FakeResponse(404, {"err": "not found"}, reason="Not Found")


@pytest.fixture
def engine():
    """In-memory SQLite database shared by every connection of the test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def vendor_clients() -> Dict[str, Any]:
    """Integration clients handed to the app. Tests replace entries as needed."""
    return {"clickup": None, "qonto": None, "vision": None}


@pytest.fixture
def client(session, vendor_clients):
    """FastAPI TestClient wired to the test database and fake vendor clients."""
    def get_test_db():
        yield session

    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[deps.get_clickup_client] = lambda: vendor_clients["clickup"]
    app.dependency_overrides[deps.get_qonto_client] = lambda: vendor_clients["qonto"]
    app.dependency_overrides[deps.get_vision_analyzer] = lambda: vendor_clients["vision"]
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_token(sub: str = TEST_USER_ID, email: str = TEST_USER_EMAIL, expires_in: int = 3600,
               secret: str = "test-jwt-secret", audience: str = "authenticated") -> str:
    """A Supabase-style access token."""
    now = int(time.time())
    claims = {
        "sub": sub,
        "email": email,
        "role": "authenticated",
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def token() -> str:
    return make_token()


@pytest.fixture
def auth_headers(token) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def add(session) -> Callable[..., Any]:
    """Persist rows and return the first one, refreshed."""
    def _add(*rows):
        for row in rows:
            session.add(row)
        session.commit()
        for row in rows:
            session.refresh(row)
        return rows[0] if len(rows) == 1 else rows
    return _add
