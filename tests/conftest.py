"""
Shared fixtures: a throwaway SQLite database, mocked upstream HTTP, an app client.

Environment is set before any application module is imported so the
settings singleton and the engine pick up the test values.
"""

import asyncio
import os
import tempfile

from cryptography.fernet import Fernet

_DB_PATH = os.path.join(tempfile.gettempdir(), f"integration_hub_test_{os.getpid()}.db")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["OAUTH_STATE_SECRET"] = "test-state-secret"
os.environ["TOKEN_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["OPENAI_API_KEY"] = ""

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from config.settings import config  # noqa: E402
from connectors.base import BaseConnector  # noqa: E402
from database.models import Base  # noqa: E402
from database.session import async_session_factory, engine  # noqa: E402


async def _reset_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """Zero backoff and a known set of provider credentials for every test."""
    monkeypatch.setattr(config, "default_backoff_base", 0.0)
    monkeypatch.setattr(config, "google_client_id", "google-id")
    monkeypatch.setattr(config, "google_client_secret", "google-secret")
    monkeypatch.setattr(config, "github_client_id", "github-id")
    monkeypatch.setattr(config, "github_client_secret", "github-secret")
    monkeypatch.setattr(config, "slack_client_id", "slack-id")
    monkeypatch.setattr(config, "slack_client_secret", "slack-secret")
    monkeypatch.setattr(config, "merge_api_key", "merge-key")
    monkeypatch.setattr(config, "figma_client_id", "figma-id")
    monkeypatch.setattr(config, "figma_client_secret", "figma-secret")
    monkeypatch.setattr(config, "openai_api_key", None)


@pytest.fixture
def mock_upstream(monkeypatch):
    """
    Route every connector HTTP call through ``httpx.MockTransport``.

    Usage: ``calls = mock_upstream(handler)``; ``calls`` collects the
    ``httpx.Request`` objects the handler saw.
    """

    def _install(handler):
        calls = []

        def _recording(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return handler(request)

        transport = httpx.MockTransport(_recording)
        monkeypatch.setattr(
            BaseConnector,
            "http_client",
            staticmethod(lambda: httpx.AsyncClient(transport=transport)),
        )
        return calls

    return _install


@pytest_asyncio.fixture
async def session():
    await _reset_schema()
    async with async_session_factory() as s:
        yield s


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from main import app

    asyncio.run(_reset_schema())
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(client):
    resp = client.post(
        "/api/v1/auth/register",
        json={"display_name": "Ada", "email": "ada@example.com", "password": "s3cret-pass"},
    )
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def pytest_sessionfinish(session, exitstatus):
    if os.path.exists(_DB_PATH):
        os.remove(_DB_PATH)
