"""
Shared test fixtures.

Every test runs with the INSIGHTS_* environment cleared so a developer's
shell or .env never leaks into resolution.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from insights_query.models import Account, CredentialSession, ResolvedConfig

_ENV_VARS = [
    "INSIGHTS_WORKSPACE_PATH",
    "INSIGHTS_CONFIG",
    "INSIGHTS_PROFILE",
    "INSIGHTS_ACCESS_TOKEN",
    "INSIGHTS_PLACEHOLDER_POLICY",
    "INSIGHTS_CONNECTION_NAME",
    "INSIGHTS_TENANT_ID",
    "INSIGHTS_CLIENT_ID",
    "INSIGHTS_CLIENT_SECRET",
    "INSIGHTS_AUTH_FLOW",
    "INSIGHTS_APP_INSIGHTS_ID",
    "INSIGHTS_KUSTO_URL",
    "INSIGHTS_KUSTO_DATABASE",
    "INSIGHTS_CACHE_ENABLED",
    "INSIGHTS_CACHE_TTL",
    "INSIGHTS_REMOVE_PII",
    "INSIGHTS_QUERIES_FOLDER",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove env vars that leak between tests."""
    for key in _ENV_VARS:
        monkeypatch.delenv(key, raising=False)


class FakeClock:
    """Injectable clock for cache tests (epoch seconds)."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """QueryBackend double that records calls and returns a fixed table."""

    scope = "https://api.applicationinsights.io/.default"

    def __init__(self, columns=None, rows=None, error: Exception | None = None, delay: float = 0):
        self.columns = columns if columns is not None else ["name", "count"]
        self.rows = rows if rows is not None else [["GET /", 42]]
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def execute_query(self, query: str, access_token: str) -> dict:
        import asyncio

        self.calls.append((query, access_token))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {"columns": list(self.columns), "rows": [list(r) for r in self.rows]}

    async def close(self) -> None:
        pass


def make_session(token: str = "token-abc", minutes: int = 60, label: str = "jane@contoso.com") -> CredentialSession:
    return CredentialSession(
        access_token=token,
        expires_on=datetime.now(timezone.utc) + timedelta(minutes=minutes),
        account=Account(id="oid-1", label=label),
        flow="azure_cli",
    )


def make_broker(session: CredentialSession | None = None, error: Exception | None = None) -> MagicMock:
    broker = MagicMock()
    if error is not None:
        broker.acquire_token = AsyncMock(side_effect=error)
    else:
        broker.acquire_token = AsyncMock(return_value=session or make_session())
    return broker


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory():
    return make_session


@pytest.fixture
def broker_factory():
    return make_broker


@pytest.fixture
def backend_factory():
    return FakeBackend


@pytest.fixture
def config_factory(tmp_path):
    """Build a ResolvedConfig with sensible defaults; override any field."""

    def _make(**overrides) -> ResolvedConfig:
        values = dict(
            profile_name="default",
            connection_name="Contoso Production",
            tenant_id="t-123",
            auth_flow="azure_cli",
            client_id=None,
            client_secret=None,
            application_insights_app_id="app-1",
            kusto_cluster_url="https://ade.applicationinsights.io",
            kusto_database="",
            cache_enabled=True,
            cache_ttl_seconds=3600,
            remove_pii=False,
            queries_folder="queries",
            workspace_path=str(tmp_path),
            port=52345,
        )
        values.update(overrides)
        return ResolvedConfig(**values)

    return _make


@pytest.fixture
def write_config(tmp_path):
    """Write a config document into tmp_path and return its path."""

    def _write(document: dict, name: str = ".insights-config.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        return path

    return _write
