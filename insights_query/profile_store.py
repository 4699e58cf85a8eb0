"""
Profile Store — read, resolve and edit the profiles of one config document.

Every mutation re-reads the document, edits the raw JSON dict (so keys this
package does not know about survive) and rewrites the whole file through a
temp file + rename. A flat single-profile document is migrated into a
``default`` profile the first time a second profile is created.

Usage:
    from insights_query.profile_store import ProfileStore

    store = ProfileStore(".insights-config.json")
    store.create_profile("contoso-dev", {"extends": "_base", "applicationInsightsAppId": "..."})
    cfg = store.resolve("contoso-dev")
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from insights_query.config import (
    DEFAULT_PROFILE_NAME,
    PlaceholderPolicy,
    parse_document,
    read_raw_document,
    resolve,
)
from insights_query.errors import (
    ConfigDocumentError,
    ConfigError,
    ProfileExistsError,
    ProfileNotFoundError,
)
from insights_query.models import (
    BASE_PROFILE_PREFIX,
    ProfiledConfig,
    ProfileFields,
    ResolvedConfig,
)
from insights_query.paths import ENV_WORKSPACE_PATH

logger = logging.getLogger("insights-query.profiles")


@dataclass
class ProfileSummary:
    name: str
    connection_name: str | None
    auth_flow: str | None
    extends: str | None
    is_default: bool
    is_base: bool


class ProfileStore:
    """Profiles of a single ``.insights-config.json`` file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.is_file()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def load(self) -> ProfiledConfig:
        return parse_document(read_raw_document(self.path))

    def resolve(
        self,
        profile_name: str | None = None,
        *,
        env: Mapping[str, str] | None = None,
        workspace_path: str | None = None,
        placeholder_policy: PlaceholderPolicy = PlaceholderPolicy.PASSTHROUGH,
    ) -> ResolvedConfig:
        """Resolve a profile; the workspace defaults to the document's directory."""
        env = os.environ if env is None else env
        workspace = workspace_path or env.get(ENV_WORKSPACE_PATH) or str(self.path.parent.resolve())
        return resolve(
            self.load(),
            profile_name,
            env=env,
            workspace_path=workspace,
            placeholder_policy=placeholder_policy,
        )

    def default_profile(self) -> str:
        return self.load().default_profile or DEFAULT_PROFILE_NAME

    def list_profiles(self, include_base: bool = False) -> list[ProfileSummary]:
        document = self.load()
        default = document.default_profile or DEFAULT_PROFILE_NAME
        summaries = []
        for name, profile in document.profiles.items():
            is_base = name.startswith(BASE_PROFILE_PREFIX)
            if is_base and not include_base:
                continue
            summaries.append(ProfileSummary(
                name=name,
                connection_name=profile.connection_name,
                auth_flow=profile.auth_flow,
                extends=profile.extends,
                is_default=name == default,
                is_base=is_base,
            ))
        return summaries

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_profile(self, name: str, fields: dict[str, Any]) -> None:
        _check_fields(name, fields)
        with self._lock:
            raw = self._read_profiled()
            if name in raw["profiles"]:
                raise ProfileExistsError(name)
            raw["profiles"][name] = dict(fields)
            self._write(raw)
        logger.info("Created profile '%s'", name)

    def update_profile(self, name: str, fields: dict[str, Any]) -> None:
        """Merge ``fields`` into a profile; a None value removes the key."""
        with self._lock:
            raw = self._read_profiled()
            profile = raw["profiles"].get(name)
            if profile is None:
                raise ProfileNotFoundError(name)
            for key, value in fields.items():
                if value is None:
                    profile.pop(key, None)
                else:
                    profile[key] = value
            _check_fields(name, profile)
            self._write(raw)
        logger.info("Updated profile '%s'", name)

    def delete_profile(self, name: str) -> None:
        with self._lock:
            raw = self._read_profiled()
            if name not in raw["profiles"]:
                raise ProfileNotFoundError(name)
            if name == raw.get("defaultProfile", DEFAULT_PROFILE_NAME):
                raise ConfigError(
                    f"Cannot delete the default profile '{name}'. "
                    f"Set another default profile first."
                )
            children = sorted(
                child for child, body in raw["profiles"].items()
                if isinstance(body, dict) and body.get("extends") == name
            )
            if children:
                raise ConfigError(
                    f"Cannot delete profile '{name}': extended by {', '.join(children)}"
                )
            del raw["profiles"][name]
            self._write(raw)
        logger.info("Deleted profile '%s'", name)

    def duplicate_profile(self, source: str, target: str) -> None:
        with self._lock:
            raw = self._read_profiled()
            body = raw["profiles"].get(source)
            if body is None:
                raise ProfileNotFoundError(source)
            if target in raw["profiles"]:
                raise ProfileExistsError(target)
            copy = json.loads(json.dumps(body))
            copy["connectionName"] = f"{body.get('connectionName') or source} (Copy)"
            raw["profiles"][target] = copy
            self._write(raw)
        logger.info("Duplicated profile '%s' as '%s'", source, target)

    def set_default_profile(self, name: str) -> None:
        with self._lock:
            raw = self._read_profiled()
            if name not in raw["profiles"]:
                raise ProfileNotFoundError(name)
            if name.startswith(BASE_PROFILE_PREFIX):
                raise ProfileNotFoundError(name, reason="is a base profile and can only be extended")
            raw["defaultProfile"] = name
            self._write(raw)
        logger.info("Default profile set to '%s'", name)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _read_profiled(self) -> dict[str, Any]:
        """Raw document in multi-profile shape (flat documents migrated)."""
        if not self.exists():
            return {"profiles": {}, "defaultProfile": DEFAULT_PROFILE_NAME}
        raw = read_raw_document(self.path)
        if raw.get("profiles") is None:
            globals_ = {k: raw.pop(k) for k in ("cache", "sanitize", "references") if k in raw}
            raw.pop("profiles", None)
            raw.pop("defaultProfile", None)
            logger.info("Migrating flat config %s into profile '%s'", self.path, DEFAULT_PROFILE_NAME)
            raw = {"profiles": {DEFAULT_PROFILE_NAME: raw}, "defaultProfile": DEFAULT_PROFILE_NAME, **globals_}
        if not isinstance(raw["profiles"], dict):
            raise ConfigDocumentError(f"'profiles' in {self.path} must be an object")
        return raw

    def _write(self, raw: dict[str, Any]) -> None:
        write_document(self.path, raw)


def _check_fields(name: str, fields: dict[str, Any]) -> None:
    try:
        ProfileFields.model_validate(fields)
    except ValidationError as e:
        raise ConfigDocumentError(f"Invalid fields for profile '{name}': {e}") from e


def write_document(path: str | Path, raw: dict[str, Any]) -> None:
    """Write the whole document atomically (temp file in the same directory + rename)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(raw, f, indent=2)
            f.write("\n")
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def config_template(workspace_path: str) -> dict[str, Any]:
    return {
        "profiles": {
            "_base": {
                "authFlow": "azure_cli",
                "tenantId": "${INSIGHTS_TENANT_ID}",
                "kustoClusterUrl": "https://ade.applicationinsights.io",
                "queriesFolder": "queries",
            },
            DEFAULT_PROFILE_NAME: {
                "extends": "_base",
                "connectionName": "My Production",
                "applicationInsightsAppId": "your-app-insights-id",
                "workspacePath": workspace_path,
            },
        },
        "defaultProfile": DEFAULT_PROFILE_NAME,
        "cache": {"enabled": True, "ttlSeconds": 3600},
        "sanitize": {"removePII": False},
        "references": [],
    }


def write_template(path: str | Path, workspace_path: str, *, overwrite: bool = False) -> Path:
    """Create a starter config document. Refuses to replace an existing file."""
    path = Path(path)
    if path.exists() and not overwrite:
        raise ConfigDocumentError(f"File already exists: {path}")
    write_document(path, config_template(workspace_path))
    logger.info("Created config template: %s", path)
    return path
