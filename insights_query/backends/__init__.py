"""
Query backend abstraction layer.

Defines the QueryBackend protocol and the get_backend() factory that
picks a backend from a resolved profile:

  - kustoDatabase set  → KustoBackend (azure-kusto-data, cluster + database)
  - otherwise          → AppInsightsBackend (Application Insights REST API)

Backends are cached per target and closed together on shutdown.
"""

from __future__ import annotations

import inspect
import threading
from typing import Any, Protocol, runtime_checkable

from insights_query.models import ResolvedConfig
from insights_query.paths import APP_INSIGHTS_SCOPE


@runtime_checkable
class QueryBackend(Protocol):
    """Interface that all query backends must implement."""

    # Token audience the backend needs, e.g. "https://api.applicationinsights.io/.default"
    scope: str

    async def execute_query(self, query: str, access_token: str) -> dict[str, Any]:
        """Execute a KQL query and return the primary table.

        Returns:
            dict with "columns" (list of column names) and "rows"
            (list of value lists, datetimes as ISO strings)

        Raises:
            QueryRejectedError, NetworkFailureError, BackendTimeoutError,
            AuthFlowFailedError (token refused by the service)
        """
        ...

    async def close(self) -> None:
        """Clean up resources (connections, clients)."""
        ...


def backend_scope(config: ResolvedConfig) -> str:
    """Token scope for the profile's target, without building a backend."""
    if config.kusto_database:
        return f"{config.kusto_cluster_url.rstrip('/')}/.default"
    return APP_INSIGHTS_SCOPE


def backend_key(config: ResolvedConfig) -> str:
    kind = "kusto" if config.kusto_database else "app-insights"
    return f"{kind}:{config.backend_target}"


def create_backend(config: ResolvedConfig) -> QueryBackend:
    """Factory: build an uncached backend for the profile's target."""
    if config.kusto_database:
        from .kusto import KustoBackend
        return KustoBackend(config.kusto_cluster_url, config.kusto_database)
    from .app_insights import AppInsightsBackend
    return AppInsightsBackend(config.application_insights_app_id)


# ---------------------------------------------------------------------------
# Per-target backend cache
# ---------------------------------------------------------------------------

_backend_cache: dict[str, QueryBackend] = {}
_backend_lock = threading.Lock()


def get_backend(config: ResolvedConfig) -> QueryBackend:
    """Return a cached backend for the profile's target."""
    key = backend_key(config)
    with _backend_lock:
        if key not in _backend_cache:
            _backend_cache[key] = create_backend(config)
        return _backend_cache[key]


async def close_all_backends() -> None:
    """Close all cached backends (called during app lifespan shutdown)."""
    with _backend_lock:
        backends = list(_backend_cache.values())
        _backend_cache.clear()
    for backend in backends:
        result = backend.close()
        if inspect.isawaitable(result):
            await result
