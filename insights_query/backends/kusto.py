"""
Kusto cluster backend.

Sends KQL directly to an Azure Data Explorer cluster / database via the
azure-kusto-data SDK. Used when a profile sets ``kustoDatabase``; the
token comes from the credential broker, requested for the cluster's own
``/.default`` scope.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from azure.kusto.data import ClientRequestProperties, KustoClient, KustoConnectionStringBuilder
from azure.kusto.data.exceptions import KustoClientError, KustoServiceError

from insights_query.errors import (
    AuthFlowFailedError,
    BackendTimeoutError,
    NetworkFailureError,
    QueryRejectedError,
)
from insights_query.paths import QUERY_TIMEOUT_SECONDS

logger = logging.getLogger("insights-query.kusto")


def _plain(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    return value


def _status_code(error: KustoServiceError) -> int | None:
    response = getattr(error, "http_response", None)
    return getattr(response, "status_code", None)


class KustoBackend:
    """Query backend for one cluster + database."""

    def __init__(self, cluster_url: str, database: str, *, timeout: float = QUERY_TIMEOUT_SECONDS):
        self.cluster_url = cluster_url.rstrip("/")
        self.database = database
        self.scope = f"{self.cluster_url}/.default"
        self._timeout = timeout
        self._client: KustoClient | None = None
        self._last_token: str | None = None

    def _get_client(self, access_token: str) -> KustoClient:
        # Rebuild the client when the broker hands out a refreshed token
        if self._client is None or self._last_token != access_token:
            if self._client is not None:
                self._client.close()
            kcsb = KustoConnectionStringBuilder.with_aad_user_token_authentication(
                self.cluster_url, access_token,
            )
            self._client = KustoClient(kcsb)
            self._last_token = access_token
        return self._client

    def _execute(self, query: str, access_token: str) -> dict[str, Any]:
        properties = ClientRequestProperties()
        properties.set_option(
            ClientRequestProperties.request_timeout_option_name,
            timedelta(seconds=self._timeout),
        )
        response = self._get_client(access_token).execute(self.database, query, properties)
        primary = response.primary_results[0] if response.primary_results else None
        if primary is None:
            return {"columns": [], "rows": []}

        columns = [col.column_name for col in primary.columns]
        rows = [[_plain(row[name]) for name in columns] for row in primary]
        return {"columns": columns, "rows": rows}

    async def execute_query(self, query: str, access_token: str) -> dict[str, Any]:
        logger.info("Executing KQL against %s/%s: %.200s", self.cluster_url, self.database, query)
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self._execute, query, access_token),
                timeout=self._timeout + 5,
            )
        except asyncio.TimeoutError as e:
            raise BackendTimeoutError(f"Query timed out after {self._timeout:.0f}s") from e
        except KustoServiceError as e:
            status = _status_code(e)
            logger.error("KQL query failed (%s): %s", status, e)
            if status in (401, 403):
                raise AuthFlowFailedError(f"Authentication failed: {e}") from e
            if status == 429:
                raise QueryRejectedError(f"Rate limit exceeded: {e}", status_code=status) from e
            if status is not None and status >= 500:
                raise NetworkFailureError(f"Query execution failed ({status}): {e}") from e
            raise QueryRejectedError(f"Invalid query: {e}", status_code=status) from e
        except KustoClientError as e:
            raise QueryRejectedError(f"Query execution failed: {e}") from e
        except OSError as e:
            raise NetworkFailureError(f"Cannot reach {self.cluster_url}: {e}") from e

        logger.info("Query returned %d row(s)", len(result["rows"]))
        return result

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._last_token = None
