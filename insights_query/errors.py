"""
Error taxonomy shared by the resolver, broker, backends and cache.

Each family carries a ``category`` so callers can render distinct
remediation ("open setup" vs. "sign in" vs. "check query syntax") without
inspecting concrete classes.

Usage:
    from insights_query.errors import ConfigError, AuthError

    try:
        session = await executor.authenticate("prod")
    except AuthError as e:
        print(e.category, e)
"""

from __future__ import annotations


class InsightsQueryError(Exception):
    """Base class for every error raised by this package."""

    category = "internal"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigError(InsightsQueryError):
    category = "config"


class ProfileNotFoundError(ConfigError):
    """Raised when the requested (or default) profile has no entry."""

    def __init__(self, name: str, available: list[str] | None = None, reason: str = ""):
        self.name = name
        self.available = available or []
        msg = f"Profile '{name}' not found"
        if reason:
            msg = f"Profile '{name}' {reason}"
        if self.available:
            msg += f" (available: {', '.join(self.available)})"
        super().__init__(msg)


class CyclicInheritanceError(ConfigError):
    """Raised when an ``extends`` chain revisits a profile."""

    def __init__(self, chain: list[str]):
        self.chain = chain
        super().__init__(f"Circular profile inheritance detected: {' -> '.join(chain)}")


class MissingRequiredFieldError(ConfigError):
    """Raised when a resolved configuration lacks fields needed to run queries."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Configuration incomplete: {'; '.join(errors)}")


class UnresolvedPlaceholderError(ConfigError):
    """Raised under the strict placeholder policy when ${VAR} has no value."""

    def __init__(self, variables: list[str]):
        self.variables = sorted(set(variables))
        super().__init__(
            f"Unresolved environment placeholders: {', '.join('${' + v + '}' for v in self.variables)}"
        )


class ConfigDocumentError(ConfigError):
    """Raised when the configuration document is missing or malformed."""


class ProfileExistsError(ConfigError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Profile '{name}' already exists")


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthError(InsightsQueryError):
    category = "auth"


class NoSessionError(AuthError):
    """No usable session and the caller did not allow an interactive prompt."""


class AuthFlowFailedError(AuthError):
    """The credential flow itself failed (network, bad secret, denied, ...)."""


class AuthCancelledError(AuthError):
    """The user dismissed an interactive sign-in."""


class SignOutUnsupportedError(AuthError):
    """The flow has no programmatic sign-out (host-managed accounts)."""


# ---------------------------------------------------------------------------
# Query backend
# ---------------------------------------------------------------------------


class BackendError(InsightsQueryError):
    category = "backend"


class QueryRejectedError(BackendError):
    """The backend refused the query (syntax, semantic or throttling error)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class NetworkFailureError(BackendError):
    pass


class BackendTimeoutError(BackendError):
    pass


# ---------------------------------------------------------------------------
# Result cache (never fatal to a query)
# ---------------------------------------------------------------------------


class CacheError(InsightsQueryError):
    category = "cache"

    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(message)


class CorruptEntryError(CacheError):
    pass


class CacheWriteError(CacheError):
    pass
