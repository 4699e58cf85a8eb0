"""
Credential broker — access tokens for a resolved profile.

Defines the CredentialFlow protocol and the CredentialBroker that
dispatches on ``authFlow``:

  - azure_cli          AzureCliCredential (``az login``)
  - device_code        DeviceCodeCredential, silent first, prompts only
                       when interactive
  - client_credentials ClientSecretCredential (service principal)
  - host_integrated    session handed over by the embedding host

The broker stores no sessions itself; each flow keeps its azure-identity
credential instances, whose in-memory token cache refreshes as needed.

Usage:
    from insights_query.credentials import CredentialBroker

    broker = CredentialBroker()
    session = await broker.acquire_token(cfg, interactive=False)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from azure.core.exceptions import AzureError

from insights_query.credentials.host_integrated import HostIdentityBroker, host_scopes
from insights_query.credentials.session import account_from_token
from insights_query.errors import AuthError, AuthFlowFailedError, NoSessionError
from insights_query.models import CredentialSession, ResolvedConfig
from insights_query.paths import APP_INSIGHTS_SCOPE

logger = logging.getLogger("insights-query.credentials")

__all__ = [
    "APP_INSIGHTS_SCOPE",
    "AuthProbe",
    "AuthStatus",
    "CredentialBroker",
    "CredentialFlow",
    "HostIdentityBroker",
    "account_from_token",
    "host_scopes",
]


@runtime_checkable
class CredentialFlow(Protocol):
    """Interface every authentication flow implements."""

    name: str

    async def acquire(
        self, config: ResolvedConfig, scope: str, interactive: bool,
    ) -> CredentialSession:
        """Return a session for ``scope``.

        Raises NoSessionError when a prompt would be needed and
        ``interactive`` is False.
        """
        ...

    async def sign_out(self, config: ResolvedConfig) -> None:
        ...


class AuthStatus(str, Enum):
    AUTHENTICATED = "authenticated"
    NOT_AUTHENTICATED = "not_authenticated"
    FAILED = "failed"


@dataclass
class AuthProbe:
    """Outcome of a silent token check. Nothing is stored by probing."""

    status: AuthStatus
    session: CredentialSession | None = None
    error: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.status == AuthStatus.AUTHENTICATED


class CredentialBroker:
    """Dispatch token requests to the flow a profile selects."""

    def __init__(
        self,
        flows: dict[str, CredentialFlow] | None = None,
        host_broker: HostIdentityBroker | None = None,
    ):
        self._flows: dict[str, CredentialFlow] = dict(flows or {})
        self._host_broker = host_broker

    def flow_for(self, auth_flow: str) -> CredentialFlow:
        if auth_flow not in self._flows:
            self._flows[auth_flow] = self._build_flow(auth_flow)
        return self._flows[auth_flow]

    def _build_flow(self, auth_flow: str) -> CredentialFlow:
        if auth_flow == "azure_cli":
            from .azure_cli import AzureCliFlow
            return AzureCliFlow()
        if auth_flow == "device_code":
            from .device_code import DeviceCodeFlow
            return DeviceCodeFlow()
        if auth_flow == "client_credentials":
            from .client_credentials import ClientCredentialsFlow
            return ClientCredentialsFlow()
        if auth_flow == "host_integrated":
            from .host_integrated import HostIntegratedFlow
            return HostIntegratedFlow(self._host_broker)
        raise AuthFlowFailedError(
            f"Unknown authFlow: {auth_flow!r}. "
            f"Valid options: azure_cli, device_code, client_credentials, host_integrated"
        )

    async def acquire_token(
        self,
        config: ResolvedConfig,
        interactive: bool = True,
        *,
        scope: str | None = None,
    ) -> CredentialSession:
        """Return an unexpired session for the profile's flow.

        Raises:
            NoSessionError: no session and interaction not allowed, or the
                flow returned one that had already expired.
            AuthCancelledError: the user dismissed the interactive sign-in.
            AuthFlowFailedError: the flow itself failed.
        """
        flow = self.flow_for(config.auth_flow)
        try:
            session = await flow.acquire(config, scope or APP_INSIGHTS_SCOPE, interactive)
        except AuthError:
            raise
        except AzureError as e:
            raise AuthFlowFailedError(f"{config.auth_flow} authentication failed: {e}") from e

        if session.is_expired():
            raise NoSessionError(
                f"The {config.auth_flow} session for profile '{config.profile_name}' has expired"
            )
        logger.info(
            "Token acquired for profile '%s' via %s (%s)",
            config.profile_name, config.auth_flow, session.account.label,
        )
        return session

    async def probe(self, config: ResolvedConfig, *, scope: str | None = None) -> AuthProbe:
        """Check for a session without prompting."""
        try:
            session = await self.acquire_token(config, interactive=False, scope=scope)
        except NoSessionError as e:
            return AuthProbe(status=AuthStatus.NOT_AUTHENTICATED, error=str(e))
        except AuthError as e:
            return AuthProbe(status=AuthStatus.FAILED, error=str(e))
        return AuthProbe(status=AuthStatus.AUTHENTICATED, session=session)

    async def is_authenticated(self, config: ResolvedConfig, *, scope: str | None = None) -> bool:
        return (await self.probe(config, scope=scope)).authenticated

    async def sign_out(self, config: ResolvedConfig) -> None:
        await self.flow_for(config.auth_flow).sign_out(config)
        logger.info("Signed out of profile '%s'", config.profile_name)
