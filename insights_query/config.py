"""
Configuration — document loading, profile inheritance and placeholder
expansion.

A configuration document holds named profiles. ``resolve()`` turns one of
them into a flat ResolvedConfig:

  1. pick the profile (explicit name → ``defaultProfile`` → ``default``)
  2. walk its ``extends`` chain and merge most-base first, so the nearest
     profile defining a field wins
  3. apply the document-wide ``cache`` / ``sanitize`` / ``references``
     blocks where the merged profile left a field unset
  4. expand ``${VAR}`` placeholders from the environment

When no document exists the same resolution runs over a flat profile
built from INSIGHTS_* environment variables (config_from_env).

Usage:
    from insights_query.config import load_document, resolve

    doc = load_document(".insights-config.json")
    cfg = resolve(doc, "contoso-prod")
"""

from __future__ import annotations

import json
import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ValidationError

from insights_query.errors import (
    ConfigDocumentError,
    CyclicInheritanceError,
    ProfileNotFoundError,
    UnresolvedPlaceholderError,
)
from insights_query.models import (
    BASE_PROFILE_PREFIX,
    CacheDefaults,
    ProfiledConfig,
    ResolvedConfig,
    SanitizeDefaults,
)
from insights_query.paths import (
    CONFIG_FILENAME,
    ENV_CONFIG_PATH,
    ENV_PLACEHOLDER_POLICY,
    ENV_WORKSPACE_PATH,
    HOME_CONFIG_FILE,
    HOME_CONFIG_SINGLE_FILE,
)

logger = logging.getLogger("insights-query.config")

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_PROFILE_NAME = "default"
DEFAULT_CONNECTION_NAME = "Default"
DEFAULT_AUTH_FLOW = "azure_cli"
DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_QUERIES_FOLDER = "queries"
DEFAULT_PORT = 52345

# Root keys of a multi-profile document; anything else at the root of a
# flat document belongs to the implicit "default" profile.
_DOCUMENT_KEYS = ("profiles", "defaultProfile", "cache", "sanitize", "references")

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")
WORKSPACE_PLACEHOLDER = "workspaceFolder"


class PlaceholderPolicy(str, Enum):
    """What to do with a ${VAR} whose variable is not set."""

    PASSTHROUGH = "passthrough"  # keep the literal text, warn
    STRICT = "strict"            # raise UnresolvedPlaceholderError


def placeholder_policy_from_env(env: Mapping[str, str] | None = None) -> PlaceholderPolicy:
    env = os.environ if env is None else env
    raw = env.get(ENV_PLACEHOLDER_POLICY, PlaceholderPolicy.PASSTHROUGH.value).strip().lower()
    try:
        return PlaceholderPolicy(raw)
    except ValueError:
        logger.warning("Unknown %s=%r, using passthrough", ENV_PLACEHOLDER_POLICY, raw)
        return PlaceholderPolicy.PASSTHROUGH


# ---------------------------------------------------------------------------
# Document loading
# ---------------------------------------------------------------------------


def _reject_duplicate_keys(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise ConfigDocumentError(f"Duplicate key '{key}' in configuration document")
        result[key] = value
    return result


def read_raw_document(path: str | Path) -> dict[str, Any]:
    """Read the JSON document as a plain dict (duplicate keys rejected)."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigDocumentError(f"Configuration file not found: {path}") from e
    except OSError as e:
        raise ConfigDocumentError(f"Cannot read configuration file {path}: {e}") from e
    try:
        raw = json.loads(text, object_pairs_hook=_reject_duplicate_keys)
    except json.JSONDecodeError as e:
        raise ConfigDocumentError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigDocumentError(f"Configuration root in {path} must be an object")
    return raw


def parse_document(raw: dict[str, Any]) -> ProfiledConfig:
    """Validate a raw document. A flat document becomes one ``default`` profile."""
    try:
        if raw.get("profiles") is not None:
            return ProfiledConfig.model_validate(raw)

        doc: dict[str, Any] = {k: raw[k] for k in _DOCUMENT_KEYS if k in raw and k != "profiles"}
        flat = {k: v for k, v in raw.items() if k not in _DOCUMENT_KEYS}
        doc["profiles"] = {DEFAULT_PROFILE_NAME: flat}
        doc.setdefault("defaultProfile", DEFAULT_PROFILE_NAME)
        return ProfiledConfig.model_validate(doc)
    except ValidationError as e:
        raise ConfigDocumentError(f"Invalid configuration document: {e}") from e


def load_document(path: str | Path) -> ProfiledConfig:
    logger.info("Loading config from: %s", path)
    return parse_document(read_raw_document(path))


def discover_config_file(
    explicit: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Path | None:
    """Return the first existing config file in discovery order, or None.

    Order: explicit path / INSIGHTS_CONFIG → ./.insights-config.json →
    $INSIGHTS_WORKSPACE_PATH/.insights-config.json → ~/.insights/config.json
    → ~/.insights-config.json
    """
    env = os.environ if env is None else env
    explicit = explicit or env.get(ENV_CONFIG_PATH)
    if explicit:
        return Path(explicit).resolve()

    candidates = [Path.cwd() / CONFIG_FILENAME]
    if env.get(ENV_WORKSPACE_PATH):
        candidates.append(Path(env[ENV_WORKSPACE_PATH]) / CONFIG_FILENAME)
    candidates += [HOME_CONFIG_FILE, HOME_CONFIG_SINGLE_FILE]

    for candidate in candidates:
        if candidate.is_file():
            return candidate
    logger.debug("No config file found in any location")
    return None


# ---------------------------------------------------------------------------
# Inheritance
# ---------------------------------------------------------------------------


def select_profile_name(document: ProfiledConfig, profile_name: str | None = None) -> str:
    return profile_name or document.default_profile or DEFAULT_PROFILE_NAME


def inheritance_chain(document: ProfiledConfig, name: str) -> list[str]:
    """Return ``[name, parent, grandparent, ...]`` for a profile.

    Raises ProfileNotFoundError for a missing link and
    CyclicInheritanceError when a name reappears.
    """
    chain: list[str] = []
    visited: set[str] = set()
    current: str | None = name
    while current is not None:
        if current in visited:
            raise CyclicInheritanceError(chain + [current])
        visited.add(current)

        profile = document.profiles.get(current)
        if profile is None:
            if chain:
                raise ProfileNotFoundError(current, reason=f"not found (extended by '{chain[-1]}')")
            raise ProfileNotFoundError(current, available=document.selectable_profiles())
        chain.append(current)
        current = profile.extends
    return chain


def merge_chain(document: ProfiledConfig, chain: list[str]) -> dict[str, Any]:
    """Shallow-merge profile fields, most-base first; unset child fields fall through."""
    merged: dict[str, Any] = {}
    for name in reversed(chain):
        merged.update(document.profiles[name].defined_fields())
    merged.pop("extends", None)
    return merged


# ---------------------------------------------------------------------------
# Placeholder expansion
# ---------------------------------------------------------------------------


def expand_placeholders(
    value: Any,
    env: Mapping[str, str],
    workspace_path: str,
    missing: list[str],
) -> Any:
    """Substitute ${VAR} in every string inside ``value``.

    Variables absent from ``env`` are left as literal text and appended to
    ``missing``; the caller applies the placeholder policy.
    """
    if isinstance(value, str):
        def _sub(match: re.Match) -> str:
            var = match.group(1)
            if var == WORKSPACE_PLACEHOLDER:
                return workspace_path
            if var in env:
                return env[var]
            missing.append(var)
            return match.group(0)

        return _PLACEHOLDER.sub(_sub, value)

    if isinstance(value, list):
        return [expand_placeholders(v, env, workspace_path, missing) for v in value]

    if isinstance(value, dict):
        return {k: expand_placeholders(v, env, workspace_path, missing) for k, v in value.items()}

    if isinstance(value, BaseModel):
        return value.model_copy(update={
            name: expand_placeholders(getattr(value, name), env, workspace_path, missing)
            for name in type(value).model_fields
        })

    return value


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _first(*values: Any) -> Any:
    """Nullish coalescing: first value that is not None (False and 0 count)."""
    for value in values:
        if value is not None:
            return value
    return None


def resolve(
    document: ProfiledConfig,
    profile_name: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    workspace_path: str | None = None,
    placeholder_policy: PlaceholderPolicy = PlaceholderPolicy.PASSTHROUGH,
) -> ResolvedConfig:
    """Resolve one profile of ``document`` into a flat ResolvedConfig."""
    env = os.environ if env is None else env
    name = select_profile_name(document, profile_name)
    if name.startswith(BASE_PROFILE_PREFIX) and name in document.profiles:
        raise ProfileNotFoundError(name, reason="is a base profile and can only be extended")

    chain = inheritance_chain(document, name)
    merged = merge_chain(document, chain)
    if len(chain) > 1:
        logger.debug("Profile '%s' inherits from %s", name, " -> ".join(chain[1:]))

    cache = document.cache or CacheDefaults()
    sanitize = document.sanitize or SanitizeDefaults()
    missing: list[str] = []

    base_workspace = workspace_path or env.get(ENV_WORKSPACE_PATH) or os.getcwd()
    workspace = base_workspace
    if merged.get("workspace_path"):
        workspace = expand_placeholders(merged["workspace_path"], env, base_workspace, missing)

    values = {
        "connection_name": merged.get("connection_name", DEFAULT_CONNECTION_NAME),
        "tenant_id": merged.get("tenant_id", ""),
        "auth_flow": merged.get("auth_flow", DEFAULT_AUTH_FLOW),
        "client_id": merged.get("client_id"),
        "client_secret": merged.get("client_secret"),
        "application_insights_app_id": merged.get("application_insights_app_id", ""),
        "kusto_cluster_url": merged.get("kusto_cluster_url", ""),
        "kusto_database": merged.get("kusto_database", ""),
        "cache_enabled": _first(merged.get("cache_enabled"), cache.enabled, True),
        "cache_ttl_seconds": _first(
            merged.get("cache_ttl_seconds"), cache.ttl_seconds, DEFAULT_CACHE_TTL_SECONDS,
        ),
        "remove_pii": _first(merged.get("remove_pii"), sanitize.remove_pii, False),
        "queries_folder": merged.get("queries_folder", DEFAULT_QUERIES_FOLDER),
        "port": merged.get("port", DEFAULT_PORT),
        "references": list(_first(merged.get("references"), document.references, [])),
    }
    values = {k: expand_placeholders(v, env, workspace, missing) for k, v in values.items()}

    if missing:
        if placeholder_policy == PlaceholderPolicy.STRICT:
            raise UnresolvedPlaceholderError(missing)
        logger.warning(
            "Profile '%s': environment variables not set, placeholders left as-is: %s",
            name, ", ".join(sorted(set(missing))),
        )

    return ResolvedConfig(profile_name=name, workspace_path=workspace, **values)


# ---------------------------------------------------------------------------
# Environment fallback
# ---------------------------------------------------------------------------

_ENV_FIELDS = {
    "INSIGHTS_CONNECTION_NAME": "connectionName",
    "INSIGHTS_TENANT_ID": "tenantId",
    "INSIGHTS_CLIENT_ID": "clientId",
    "INSIGHTS_CLIENT_SECRET": "clientSecret",
    "INSIGHTS_AUTH_FLOW": "authFlow",
    "INSIGHTS_APP_INSIGHTS_ID": "applicationInsightsAppId",
    "INSIGHTS_KUSTO_URL": "kustoClusterUrl",
    "INSIGHTS_KUSTO_DATABASE": "kustoDatabase",
    "INSIGHTS_QUERIES_FOLDER": "queriesFolder",
}


def config_from_env(
    env: Mapping[str, str] | None = None,
    *,
    workspace_path: str | None = None,
    placeholder_policy: PlaceholderPolicy = PlaceholderPolicy.PASSTHROUGH,
) -> ResolvedConfig:
    """Build the implicit ``default`` profile from INSIGHTS_* variables."""
    env = os.environ if env is None else env
    raw: dict[str, Any] = {key: env[var] for var, key in _ENV_FIELDS.items() if env.get(var)}
    if env.get("INSIGHTS_CACHE_ENABLED"):
        raw["cacheEnabled"] = env["INSIGHTS_CACHE_ENABLED"].lower() != "false"
    if env.get("INSIGHTS_CACHE_TTL"):
        value = env["INSIGHTS_CACHE_TTL"]
        try:
            raw["cacheTTLSeconds"] = int(value)
        except ValueError as e:
            raise ConfigDocumentError(f"INSIGHTS_CACHE_TTL must be an integer, got {value!r}") from e
    if env.get("INSIGHTS_REMOVE_PII"):
        raw["removePII"] = env["INSIGHTS_REMOVE_PII"].lower() == "true"
    return resolve(
        parse_document(raw),
        DEFAULT_PROFILE_NAME,
        env=env,
        workspace_path=workspace_path,
        placeholder_policy=placeholder_policy,
    )


def load_config(
    config_path: str | Path | None = None,
    profile_name: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> ResolvedConfig:
    """Discover the config file and resolve a profile, falling back to env vars."""
    env = os.environ if env is None else env
    policy = placeholder_policy_from_env(env)
    path = discover_config_file(config_path, env)
    if path is None:
        logger.info("No config file found, using INSIGHTS_* environment variables")
        return config_from_env(env, placeholder_policy=policy)
    return resolve(load_document(path), profile_name, env=env, placeholder_policy=policy)
