"""
Config Validator — check a resolved profile before running queries.

validate_config() collects every problem as a human-readable string and
never raises; require_configured() turns a non-empty list into a
MissingRequiredFieldError for callers that want to stop.

Usage:
    from insights_query.config_validator import validate_config

    for problem in validate_config(cfg):
        print(problem)
"""

from __future__ import annotations

from insights_query.errors import MissingRequiredFieldError
from insights_query.models import AUTH_FLOWS, ResolvedConfig


def validate_config(config: ResolvedConfig) -> list[str]:
    """Return a list of configuration problems (empty when usable).

    Checks:
    - tenant id, App Insights app id and cluster URL are present
    - auth flow is one of the known flows
    - client_credentials has both client id and client secret
    - a workspace path is set
    - no ${VAR} placeholder survived expansion in the connection fields
    """
    errors: list[str] = []

    if not config.tenant_id.strip():
        errors.append("Missing tenantId (Azure AD tenant ID)")

    if not config.application_insights_app_id.strip():
        errors.append("Missing applicationInsightsAppId (Application Insights App ID)")

    if not config.kusto_cluster_url.strip():
        errors.append("Missing kustoClusterUrl (Kusto cluster URL)")

    if config.auth_flow not in AUTH_FLOWS:
        errors.append(
            f"Unknown authFlow '{config.auth_flow}' (expected one of: {', '.join(AUTH_FLOWS)})"
        )

    if config.auth_flow == "client_credentials":
        if not config.client_id:
            errors.append("Client credentials flow requires clientId")
        if not config.client_secret:
            errors.append("Client credentials flow requires clientSecret")

    if not config.workspace_path:
        errors.append("Missing workspacePath")

    # Left in place by the passthrough placeholder policy
    for label, value in (
        ("tenantId", config.tenant_id),
        ("applicationInsightsAppId", config.application_insights_app_id),
        ("kustoClusterUrl", config.kusto_cluster_url),
        ("clientId", config.client_id),
        ("clientSecret", config.client_secret),
    ):
        if value and "${" in value:
            errors.append(f"{label} contains an unresolved environment placeholder")

    return errors


def require_configured(config: ResolvedConfig) -> None:
    """Raise MissingRequiredFieldError when validate_config reports problems."""
    errors = validate_config(config)
    if errors:
        raise MissingRequiredFieldError(errors)
