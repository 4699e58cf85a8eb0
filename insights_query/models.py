"""
Data model — configuration documents, resolved configuration, query
results, cache entries and credential sessions.

The JSON document uses camelCase keys; the pydantic models expose
snake_case attributes with camelCase aliases so either form is accepted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from insights_query.paths import cache_dir_for

AuthFlow = Literal["azure_cli", "device_code", "client_credentials", "host_integrated"]
AUTH_FLOWS: tuple[str, ...] = ("azure_cli", "device_code", "client_credentials", "host_integrated")

# Older documents used the editor-specific name for the host flow.
_LEGACY_AUTH_FLOWS = {"vscode_auth": "host_integrated"}

BASE_PROFILE_PREFIX = "_"


class _DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


# ---------------------------------------------------------------------------
# Configuration document
# ---------------------------------------------------------------------------


class Reference(_DocumentModel):
    name: str
    type: Literal["github", "web"] = "github"
    url: str
    enabled: bool = True


class ProfileFields(_DocumentModel):
    """One entry of ``profiles`` — every field optional so children can inherit."""

    extends: str | None = None
    connection_name: str | None = None
    tenant_id: str | None = None
    auth_flow: AuthFlow | None = None
    client_id: str | None = None
    client_secret: str | None = None
    application_insights_app_id: str | None = None
    kusto_cluster_url: str | None = None
    kusto_database: str | None = None
    cache_enabled: bool | None = None
    cache_ttl_seconds: int | None = Field(default=None, alias="cacheTTLSeconds")
    remove_pii: bool | None = Field(default=None, alias="removePII")
    queries_folder: str | None = None
    workspace_path: str | None = None
    port: int | None = None
    references: list[Reference] | None = None

    @field_validator("auth_flow", mode="before")
    @classmethod
    def _map_legacy_flow(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _LEGACY_AUTH_FLOWS.get(value, value)
        return value

    def defined_fields(self) -> dict[str, Any]:
        """Return the declared fields that are set (non-null), keyed by attribute name."""
        return {
            name: getattr(self, name)
            for name in type(self).model_fields
            if getattr(self, name) is not None
        }


class CacheDefaults(_DocumentModel):
    enabled: bool | None = None
    ttl_seconds: int | None = None


class SanitizeDefaults(_DocumentModel):
    remove_pii: bool | None = Field(default=None, alias="removePII")


class ProfiledConfig(_DocumentModel):
    """Root configuration document."""

    profiles: dict[str, ProfileFields] = Field(default_factory=dict)
    default_profile: str | None = None
    cache: CacheDefaults | None = None
    sanitize: SanitizeDefaults | None = None
    references: list[Reference] | None = None

    def selectable_profiles(self) -> list[str]:
        return [n for n in self.profiles if not n.startswith(BASE_PROFILE_PREFIX)]


# ---------------------------------------------------------------------------
# Resolved configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResolvedConfig:
    """Flattened, placeholder-expanded configuration of one profile."""

    profile_name: str
    connection_name: str
    tenant_id: str
    auth_flow: str
    client_id: str | None
    client_secret: str | None = field(repr=False)
    application_insights_app_id: str
    kusto_cluster_url: str
    kusto_database: str
    cache_enabled: bool
    cache_ttl_seconds: int
    remove_pii: bool
    queries_folder: str
    workspace_path: str
    port: int
    references: list[Reference] = field(default_factory=list)

    @property
    def is_configured(self) -> bool:
        """True when the fields needed to reach the backend are all present."""
        return bool(
            self.tenant_id.strip()
            and self.application_insights_app_id.strip()
            and self.kusto_cluster_url.strip()
        )

    @property
    def backend_target(self) -> str:
        """Identity of the data source queries run against."""
        if self.kusto_database:
            return f"{self.kusto_cluster_url.rstrip('/')}/{self.kusto_database}"
        return self.application_insights_app_id

    @property
    def cache_dir(self) -> Path:
        return cache_dir_for(self.workspace_path, self.backend_target)

    def missing_required(self) -> list[str]:
        missing = []
        if not self.tenant_id.strip():
            missing.append("tenantId")
        if not self.application_insights_app_id.strip():
            missing.append("applicationInsightsAppId")
        if not self.kusto_cluster_url.strip():
            missing.append("kustoClusterUrl")
        return missing


# ---------------------------------------------------------------------------
# Query results
# ---------------------------------------------------------------------------

ResultType = Literal["table", "empty", "error"]
ErrorCategory = Literal["config", "auth", "backend", "validation", "internal"]


class QueryResult(BaseModel):
    type: ResultType
    kql: str
    summary: str
    columns: list[str] = []
    rows: list[list[Any]] = []
    recommendations: list[str] = []
    cached: bool = False
    error_category: ErrorCategory | None = Field(
        default=None,
        description=(
            "Set on error results. 'config' → fix the profile, 'auth' → sign in, "
            "'backend'/'validation' → check the query."
        ),
    )


class CacheEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: QueryResult
    timestamp: float
    ttl_seconds: int = Field(alias="ttlSeconds")

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_valid(self, now: float) -> bool:
        return self.age(now) <= self.ttl_seconds


# ---------------------------------------------------------------------------
# Credentials (in memory only)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Account:
    id: str
    label: str


@dataclass(frozen=True)
class CredentialSession:
    access_token: str = field(repr=False)
    expires_on: datetime
    account: Account
    flow: str = ""

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_on


# ---------------------------------------------------------------------------
# HTTP API request / response bodies
# ---------------------------------------------------------------------------


class QueryRequest(BaseModel):
    kql: str = Field(..., description="KQL query text")
    profile: str | None = Field(default=None, description="Profile name; default profile when omitted")


class SaveQueryRequest(BaseModel):
    name: str
    kql: str
    purpose: str | None = None
    use_case: str | None = None
    tags: list[str] = []
    category: str | None = None
    profile: str | None = None
    overwrite: bool = False


class AuthStatusResponse(BaseModel):
    profile: str
    auth_flow: str
    status: str
    authenticated: bool
    account: str | None = None
    expires_on: datetime | None = None
    error: str | None = None
