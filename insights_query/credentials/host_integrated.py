"""
Host-integrated flow — the embedding host (an editor, a desktop shell)
owns the account and hands sessions over through a HostIdentityBroker.

Hosts select the tenant through a pseudo-scope: ``TENANT:<id>`` is sent
ahead of the resource scope when the profile names a tenant.

The default broker reads a token from INSIGHTS_ACCESS_TOKEN, which is how
a host passes its session to a child process.
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Protocol, runtime_checkable

from insights_query.credentials.session import account_from_token, token_expiry
from insights_query.errors import (
    AuthCancelledError,
    AuthError,
    AuthFlowFailedError,
    NoSessionError,
    SignOutUnsupportedError,
)
from insights_query.models import CredentialSession, ResolvedConfig
from insights_query.paths import ENV_ACCESS_TOKEN

logger = logging.getLogger("insights-query.credentials")

TENANT_SCOPE_PREFIX = "TENANT:"


def host_scopes(base_scope: str, tenant_id: str | None) -> list[str]:
    """Scopes to request from the host; blank tenants add no tenant scope."""
    tenant = (tenant_id or "").strip()
    if not tenant:
        return [base_scope]
    return [f"{TENANT_SCOPE_PREFIX}{tenant}", base_scope]


@runtime_checkable
class HostIdentityBroker(Protocol):
    """Session source supplied by the embedding host."""

    async def get_session(
        self,
        scopes: list[str],
        *,
        create_if_none: bool,
        silent: bool,
    ) -> CredentialSession | None:
        """Return a session for ``scopes``, or None when there is none.

        create_if_none=True may show the host's account picker; silent=True
        must never show UI.
        """
        ...


class EnvironmentTokenBroker:
    """HostIdentityBroker backed by an access token in the environment."""

    def __init__(self, env: Mapping[str, str] | None = None):
        self._env = os.environ if env is None else env

    async def get_session(
        self,
        scopes: list[str],
        *,
        create_if_none: bool,
        silent: bool,
    ) -> CredentialSession | None:
        token = self._env.get(ENV_ACCESS_TOKEN, "").strip()
        if not token:
            return None
        return CredentialSession(
            access_token=token,
            expires_on=token_expiry(token),
            account=account_from_token(token, "Host account"),
            flow="host_integrated",
        )


class HostIntegratedFlow:
    name = "host_integrated"

    def __init__(self, broker: HostIdentityBroker | None = None):
        self.broker = broker or EnvironmentTokenBroker()

    async def acquire(
        self, config: ResolvedConfig, scope: str, interactive: bool,
    ) -> CredentialSession:
        scopes = host_scopes(scope, config.tenant_id)
        try:
            session = await self.broker.get_session(
                scopes, create_if_none=interactive, silent=not interactive,
            )
        except AuthError:
            raise
        except Exception as e:
            raise AuthFlowFailedError(f"Host sign-in failed: {e}") from e

        if session is None:
            if interactive:
                raise AuthCancelledError("Sign-in was cancelled or no account was selected")
            raise NoSessionError("No host session available. Sign in through the host first.")
        return session

    async def sign_out(self, config: ResolvedConfig) -> None:
        raise SignOutUnsupportedError(
            "Host-managed accounts cannot be signed out programmatically. "
            "Sign out from the host's account menu."
        )
