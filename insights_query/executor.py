"""
Query executor — resolve a profile, consult the result cache, broker a
token on a miss, run the query and return a uniform QueryResult.

Per call:

  resolve → configured? → query checks → cache check
      hit  → sanitize → return (cached=True, no token requested)
      miss → token → backend → sanitize → recommendations → store
             → return (cached=False)

execute() never raises for config, auth or backend failures: they come
back as ``type="error"`` results with an ``error_category``. Cache and
sanitization failures are logged and skipped. authenticate() is the
entry point that propagates ConfigError / AuthError to the caller.

Concurrent identical queries for the same profile and target share one
in-flight task, so a cold cache triggers one backend call and at most
one sign-in prompt.

Usage:
    from insights_query.executor import QueryExecutor
    from insights_query.profile_store import ProfileStore

    executor = QueryExecutor(ProfileStore(".insights-config.json"))
    result = await executor.execute("requests | take 10", "contoso-prod")
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from typing import Any, Callable, Mapping

from insights_query.backends import QueryBackend, backend_scope, get_backend
from insights_query.cache import CacheStats, ClearResult, ResultCache
from insights_query.config import (
    DEFAULT_PROFILE_NAME,
    PlaceholderPolicy,
    config_from_env,
    discover_config_file,
    placeholder_policy_from_env,
    resolve,
)
from insights_query.credentials import AuthProbe, CredentialBroker
from insights_query.errors import (
    AuthError,
    BackendError,
    CacheError,
    ConfigError,
    ProfileNotFoundError,
)
from insights_query.inflight import SingleFlight
from insights_query.kql_checks import recommendations, validate_query
from insights_query.models import CredentialSession, ErrorCategory, ProfiledConfig, QueryResult, ResolvedConfig
from insights_query.paths import ENV_PROFILE
from insights_query.profile_store import ProfileStore
from insights_query.queries import SavedQueriesStore
from insights_query.sanitize import sanitize_object

logger = logging.getLogger("insights-query.executor")


def error_result(kql: str, message: str, category: ErrorCategory, hints: list[str] | None = None) -> QueryResult:
    return QueryResult(
        type="error",
        kql=kql,
        summary=message,
        recommendations=hints or [],
        error_category=category,
    )


def build_result(kql: str, raw: dict[str, Any]) -> QueryResult:
    """Turn a backend {columns, rows} dict into a table/empty result."""
    columns = list(raw.get("columns") or [])
    rows = [list(row) for row in raw.get("rows") or []]
    if not rows:
        return QueryResult(type="empty", kql=kql, summary="No results returned", columns=columns)
    return QueryResult(
        type="table",
        kql=kql,
        summary=f"Returned {len(rows)} row(s) with {len(columns)} column(s)",
        columns=columns,
        rows=rows,
    )


class QueryExecutor:
    """Profile-aware query runner with a TTL result cache."""

    def __init__(
        self,
        source: ProfileStore | ProfiledConfig | None = None,
        *,
        broker: CredentialBroker | None = None,
        backend_factory: Callable[[ResolvedConfig], QueryBackend] = get_backend,
        interactive: bool = True,
        env: Mapping[str, str] | None = None,
        placeholder_policy: PlaceholderPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.source = source
        self.broker = broker or CredentialBroker()
        self.interactive = interactive
        self._backend_factory = backend_factory
        self._env = env
        self._policy = placeholder_policy or placeholder_policy_from_env(env)
        self._clock = clock
        self._caches: dict[tuple[str, int, bool], ResultCache] = {}
        self._caches_lock = threading.Lock()
        self._flight = SingleFlight()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def env(self) -> Mapping[str, str]:
        return os.environ if self._env is None else self._env

    def resolve(self, profile_name: str | None = None) -> ResolvedConfig:
        """Resolve a profile (explicit → INSIGHTS_PROFILE → document default)."""
        env = self.env
        profile_name = profile_name or env.get(ENV_PROFILE) or None

        if isinstance(self.source, ProfileStore):
            return self.source.resolve(profile_name, env=env, placeholder_policy=self._policy)
        if isinstance(self.source, ProfiledConfig):
            return resolve(self.source, profile_name, env=env, placeholder_policy=self._policy)

        if profile_name and profile_name != DEFAULT_PROFILE_NAME:
            raise ProfileNotFoundError(profile_name, available=[DEFAULT_PROFILE_NAME])
        return config_from_env(env, placeholder_policy=self._policy)

    def is_configured(self, profile_name: str | None = None) -> bool:
        try:
            return self.resolve(profile_name).is_configured
        except ConfigError:
            return False

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def cache_for(self, config: ResolvedConfig) -> ResultCache:
        """Shared ResultCache for the profile's cache namespace and policy."""
        key = (str(config.cache_dir), config.cache_ttl_seconds, config.cache_enabled)
        with self._caches_lock:
            if key not in self._caches:
                self._caches[key] = ResultCache(
                    config.cache_dir,
                    ttl_seconds=config.cache_ttl_seconds,
                    enabled=config.cache_enabled,
                    clock=self._clock,
                )
            return self._caches[key]

    def cache_stats(self, profile_name: str | None = None) -> CacheStats:
        return self.cache_for(self.resolve(profile_name)).stats()

    def clear_cache(self, profile_name: str | None = None) -> ClearResult:
        return self.cache_for(self.resolve(profile_name)).clear()

    def cleanup_cache(self, profile_name: str | None = None) -> int:
        return self.cache_for(self.resolve(profile_name)).cleanup_expired()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(
        self, profile_name: str | None = None, interactive: bool = True,
    ) -> CredentialSession:
        """Acquire a token for the profile, raising ConfigError / AuthError."""
        config = self.resolve(profile_name)
        return await self.broker.acquire_token(config, interactive, scope=backend_scope(config))

    async def auth_status(self, profile_name: str | None = None) -> AuthProbe:
        config = self.resolve(profile_name)
        return await self.broker.probe(config, scope=backend_scope(config))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def saved_queries(self, profile_name: str | None = None) -> SavedQueriesStore:
        config = self.resolve(profile_name)
        return SavedQueriesStore(config.workspace_path, config.queries_folder)

    async def execute(self, query_text: str, profile_name: str | None = None) -> QueryResult:
        try:
            config = self.resolve(profile_name)
        except ConfigError as e:
            logger.warning("Configuration error: %s", e)
            return error_result(query_text, str(e), "config")

        if not config.is_configured:
            missing = ", ".join(config.missing_required())
            return error_result(
                query_text,
                f"Profile '{config.profile_name}' is not configured (missing {missing})",
                "config",
            )

        problems = validate_query(query_text)
        if problems:
            return error_result(query_text, "Query validation failed", "validation", problems)

        key = (
            config.profile_name,
            config.tenant_id,
            config.backend_target,
            ResultCache.fingerprint(query_text),
        )
        try:
            return await self._flight.do(key, lambda: self._run(config, query_text))
        except AuthError as e:
            logger.warning("Authentication failed for profile '%s': %s", config.profile_name, e)
            return error_result(query_text, str(e), "auth")
        except BackendError as e:
            logger.warning("Query failed for profile '%s': %s", config.profile_name, e)
            return error_result(query_text, str(e), "backend")
        except Exception as e:
            logger.exception("Unexpected error executing query")
            return error_result(query_text, f"Query execution failed: {e}", "internal")

    async def _run(self, config: ResolvedConfig, query: str) -> QueryResult:
        cache = self.cache_for(config)
        try:
            hit = await asyncio.to_thread(cache.get, query)
        except CacheError as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", e.path, e)
            hit = None
        if hit is not None and config.remove_pii:
            # entries may have been stored by a profile that does not redact
            try:
                hit = hit.model_copy(update={"rows": sanitize_object(hit.rows)})
            except Exception:
                logger.exception("Sanitization of cached rows failed; querying the backend")
                hit = None
        if hit is not None:
            logger.info("Cache hit for profile '%s'", config.profile_name)
            return hit.model_copy(update={"cached": True})

        backend = self._backend_factory(config)
        session = await self.broker.acquire_token(config, self.interactive, scope=backend.scope)
        raw = await backend.execute_query(query, session.access_token)
        result = build_result(query, raw)

        cacheable = True
        if config.remove_pii:
            try:
                result = result.model_copy(update={"rows": sanitize_object(result.rows)})
            except Exception:
                logger.exception("Sanitization failed; result will not be cached")
                cacheable = False

        result = result.model_copy(
            update={"recommendations": recommendations(query, len(result.rows))},
        )

        if cacheable:
            try:
                await asyncio.to_thread(cache.set, query, result)
            except CacheError as e:
                logger.warning("Failed to cache result: %s", e)
        return result


# ---------------------------------------------------------------------------
# Shared executor (lazy-initialised, used by the HTTP API)
# ---------------------------------------------------------------------------

_executor: QueryExecutor | None = None


def get_executor() -> QueryExecutor:
    """Return the process-wide executor over the discovered config file."""
    global _executor
    if _executor is None:
        path = discover_config_file()
        _executor = QueryExecutor(ProfileStore(path) if path else None)
    return _executor
