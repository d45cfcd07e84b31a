import uuid

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.orm import sessionmaker

from app.core.config import get_settings
from app.core.dependencies import build_engine
from app.models.service import Base
from app.utils.alerting import alert_tracker
from app.utils.rate_limit import rate_limiter

CUSTOMER_ID = "00000000-0000-0000-0000-0000000000c1"
OTHER_CUSTOMER_ID = "00000000-0000-0000-0000-0000000000c2"
PROVIDER_A = "00000000-0000-0000-0000-0000000000a1"
PROVIDER_B = "00000000-0000-0000-0000-0000000000b2"

# Inside Manhattan.
MANHATTAN = {"latitude": 40.7484, "longitude": -73.9857}


@pytest.fixture(autouse=True)
def _reset_process_state():
    # Settings are cached per process; tests mutate env vars.
    get_settings.cache_clear()
    alert_tracker.reset()
    rate_limiter.reset()
    yield
    get_settings.cache_clear()


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite://")
    Base.metadata.create_all(test_engine)
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def service_payload(**overrides) -> dict:
    payload = {
        "service_id": str(uuid.uuid4()),
        "service_type": "cleaning",
        "description": "I need my one bedroom apartment deep cleaned",
        "location": "350 5th Ave, New York, NY 10118",
        "coordinate": dict(MANHATTAN),
        "price": 85,
        "payment_method_type": "Personal",
        "autofill_type": "Custom",
    }
    payload.update(overrides)
    return payload


def auth_headers(role: str, sub: str, **extra: str) -> dict:
    headers = {"X-Test-Role": role, "X-Test-Sub": sub, "X-Test-Email": f"{sub[-4:]}@example.com"}
    for key, value in extra.items():
        headers[f"X-Test-{key.replace('_', '-').title()}"] = value
    return headers


def _install_overrides(app, session_factory):
    from fastapi import HTTPException, Request

    from app.core.auth import CurrentUser, get_current_user
    from app.core.dependencies import get_db

    def _test_get_current_user(request: Request):
        sub = request.headers.get("x-test-sub")
        role = request.headers.get("x-test-role")
        if not sub or not role:
            raise HTTPException(401, "Missing bearer token")
        return CurrentUser(
            id=sub,
            role=role,
            email=request.headers.get("x-test-email"),
            first_name=request.headers.get("x-test-first-name"),
            last_name=request.headers.get("x-test-last-name"),
        )

    def _test_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_current_user] = _test_get_current_user
    app.dependency_overrides[get_db] = _test_get_db


@pytest_asyncio.fixture
async def client_for(session_factory):
    """Factory for in-process ASGI clients authenticated as a given actor."""
    from app.main import app
    from app.services.status_watch import StatusSessionRegistry

    _install_overrides(app, session_factory)
    app.state.status_sessions = StatusSessionRegistry()
    clients: list[httpx.AsyncClient] = []

    def _make(role: str, sub: str, **extra: str) -> httpx.AsyncClient:
        c = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://test",
            headers=auth_headers(role, sub, **extra),
        )
        clients.append(c)
        return c

    yield _make

    for c in clients:
        await c.aclose()
    app.dependency_overrides.clear()
