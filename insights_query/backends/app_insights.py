"""
Application Insights backend.

POSTs KQL to the Application Insights query API
(``{APP_INSIGHTS_API_URL}/apps/{appId}/query``) with a bearer token and
normalises the primary table to {columns, rows}.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from insights_query.errors import (
    AuthFlowFailedError,
    BackendTimeoutError,
    NetworkFailureError,
    QueryRejectedError,
)
from insights_query.paths import APP_INSIGHTS_API_URL, APP_INSIGHTS_SCOPE, QUERY_TIMEOUT_SECONDS

logger = logging.getLogger("insights-query.app-insights")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return response.text[:500] or response.reason_phrase


def parse_tables(body: dict[str, Any]) -> dict[str, Any]:
    """Primary table of a query response as {columns: [names], rows: [[...]]}."""
    tables = body.get("tables") or []
    if not tables:
        return {"columns": [], "rows": []}
    primary = tables[0]
    columns = [col.get("name") or col.get("columnName") for col in primary.get("columns", [])]
    return {"columns": columns, "rows": primary.get("rows", [])}


class AppInsightsBackend:
    """Query backend for one Application Insights app id."""

    scope = APP_INSIGHTS_SCOPE

    def __init__(
        self,
        app_id: str,
        *,
        base_url: str = APP_INSIGHTS_API_URL,
        timeout: float = QUERY_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.app_id = app_id
        self.url = f"{base_url.rstrip('/')}/apps/{app_id}/query"
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def execute_query(self, query: str, access_token: str) -> dict[str, Any]:
        logger.info("Executing KQL against app %s: %.200s", self.app_id, query)
        try:
            response = await self._get_client().post(
                self.url,
                json={"query": query},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(f"Query timed out after {self._timeout:.0f}s") from e
        except httpx.TransportError as e:
            raise NetworkFailureError(f"Cannot reach Application Insights: {e}") from e

        status = response.status_code
        if status >= 400:
            message = _error_message(response)
            logger.error("Query failed (%d): %s", status, message)
            if status in (401, 403):
                raise AuthFlowFailedError(
                    f"Authentication failed: {message}. Check your credentials and permissions."
                )
            if status == 400:
                raise QueryRejectedError(f"Invalid query: {message}", status_code=status)
            if status == 429:
                raise QueryRejectedError(
                    f"Rate limit exceeded: {message}. Please try again later.", status_code=status,
                )
            raise NetworkFailureError(f"Query execution failed ({status}): {message}")

        try:
            body = response.json()
        except ValueError as e:
            raise NetworkFailureError("Application Insights returned a non-JSON response") from e
        result = parse_tables(body)
        logger.info("Query returned %d row(s)", len(result["rows"]))
        return result

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
