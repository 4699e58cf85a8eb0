"""Tests for the Application Insights and Kusto query backends."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest
from azure.kusto.data.exceptions import KustoServiceError

from insights_query import backends
from insights_query.backends import backend_scope, close_all_backends, create_backend, get_backend
from insights_query.backends.app_insights import AppInsightsBackend, parse_tables
from insights_query.backends.kusto import KustoBackend
from insights_query.errors import (
    AuthFlowFailedError,
    BackendTimeoutError,
    NetworkFailureError,
    QueryRejectedError,
)

_BODY = {
    "tables": [{
        "name": "PrimaryResult",
        "columns": [{"name": "name", "type": "string"}, {"name": "count_", "type": "long"}],
        "rows": [["GET /", 12], ["POST /login", 3]],
    }]
}


def _backend(handler) -> AppInsightsBackend:
    return AppInsightsBackend(
        "app-1",
        base_url="https://api.example.test/v1",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestParseTables:
    def test_primary_table(self):
        assert parse_tables(_BODY) == {
            "columns": ["name", "count_"],
            "rows": [["GET /", 12], ["POST /login", 3]],
        }

    def test_column_name_key(self):
        body = {"tables": [{"columns": [{"columnName": "x"}], "rows": [[1]]}]}
        assert parse_tables(body)["columns"] == ["x"]

    def test_no_tables(self):
        assert parse_tables({}) == {"columns": [], "rows": []}


class TestAppInsightsBackend:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_BODY)

        backend = _backend(handler)
        result = await backend.execute_query("requests | take 2", "tok-1")
        await backend.close()

        assert seen == {
            "url": "https://api.example.test/v1/apps/app-1/query",
            "auth": "Bearer tok-1",
            "body": {"query": "requests | take 2"},
        }
        assert result["rows"] == [["GET /", 12], ["POST /login", 3]]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error, text",
        [
            (400, QueryRejectedError, "Invalid query: Syntax error"),
            (401, AuthFlowFailedError, "Authentication failed"),
            (403, AuthFlowFailedError, "Authentication failed"),
            (429, QueryRejectedError, "Rate limit exceeded"),
            (503, NetworkFailureError, "(503)"),
        ],
    )
    async def test_status_mapping(self, status, error, text):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"error": {"message": "Syntax error", "code": "BadArgumentError"}})

        with pytest.raises(error) as exc_info:
            await _backend(handler).execute_query("requests |", "tok")

        assert text in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_rejected_query_keeps_status(self):
        def handler(request):
            return httpx.Response(400, text="bad")

        with pytest.raises(QueryRejectedError) as exc_info:
            await _backend(handler).execute_query("x", "tok")

        assert exc_info.value.status_code == 400
        assert "bad" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(BackendTimeoutError):
            await _backend(handler).execute_query("x", "tok")

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkFailureError, match="Cannot reach"):
            await _backend(handler).execute_query("x", "tok")


class _Column:
    def __init__(self, name):
        self.column_name = name


class _Table:
    """Stand-in for a KustoResultTable: iterable rows indexable by column name."""

    def __init__(self, columns, rows):
        self.columns = [_Column(c) for c in columns]
        self._rows = [dict(zip(columns, r)) for r in rows]

    def __iter__(self):
        return iter(self._rows)


class TestKustoBackend:
    def _client(self, table=None, error=None):
        client = MagicMock()
        if error is not None:
            client.execute.side_effect = error
        else:
            client.execute.return_value = MagicMock(primary_results=[table] if table else [])
        return client

    def test_scope_is_cluster_audience(self):
        backend = KustoBackend("https://help.kusto.windows.net/", "Samples")
        assert backend.scope == "https://help.kusto.windows.net/.default"

    @pytest.mark.asyncio
    async def test_rows_are_plain_values(self):
        ts = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        client = self._client(_Table(["ts", "n"], [[ts, 1]]))
        backend = KustoBackend("https://help.kusto.windows.net", "Samples", timeout=5)

        with patch.object(backend, "_get_client", return_value=client):
            result = await backend.execute_query("StormEvents | take 1", "tok")

        assert result == {"columns": ["ts", "n"], "rows": [["2024-05-01T12:00:00+00:00", 1]]}
        assert client.execute.call_args.args[:2] == ("Samples", "StormEvents | take 1")

    @pytest.mark.asyncio
    async def test_no_primary_result(self):
        backend = KustoBackend("https://help.kusto.windows.net", "Samples", timeout=5)
        with patch.object(backend, "_get_client", return_value=self._client()):
            assert await backend.execute_query("x", "tok") == {"columns": [], "rows": []}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error",
        [
            (400, QueryRejectedError),
            (401, AuthFlowFailedError),
            (429, QueryRejectedError),
            (500, NetworkFailureError),
        ],
    )
    async def test_service_error_mapping(self, status, error):
        failure = KustoServiceError("Semantic error", http_response=MagicMock(status_code=status))
        backend = KustoBackend("https://help.kusto.windows.net", "Samples", timeout=5)

        with patch.object(backend, "_get_client", return_value=self._client(error=failure)):
            with pytest.raises(error):
                await backend.execute_query("x", "tok")

    @pytest.mark.asyncio
    async def test_unreachable_cluster(self):
        backend = KustoBackend("https://nowhere.example", "db", timeout=5)
        with patch.object(backend, "_get_client", return_value=self._client(error=ConnectionError("refused"))):
            with pytest.raises(NetworkFailureError):
                await backend.execute_query("x", "tok")


class TestBackendFactory:
    def test_kusto_database_selects_kusto(self, config_factory):
        cfg = config_factory(kusto_cluster_url="https://help.kusto.windows.net", kusto_database="Samples")

        assert isinstance(create_backend(cfg), KustoBackend)
        assert backend_scope(cfg) == "https://help.kusto.windows.net/.default"

    def test_app_insights_by_default(self, config_factory):
        cfg = config_factory()
        assert isinstance(create_backend(cfg), AppInsightsBackend)
        assert backend_scope(cfg) == "https://api.applicationinsights.io/.default"

    @pytest.mark.asyncio
    async def test_cached_per_target_and_closed(self, config_factory, monkeypatch):
        monkeypatch.setattr(backends, "_backend_cache", {})
        a1 = get_backend(config_factory(application_insights_app_id="a"))
        a2 = get_backend(config_factory(application_insights_app_id="a", profile_name="other"))
        b = get_backend(config_factory(application_insights_app_id="b"))

        assert a1 is a2
        assert a1 is not b

        await close_all_backends()
        assert backends._backend_cache == {}
