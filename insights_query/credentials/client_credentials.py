"""
Client credentials flow — service principal with a client secret, for
unattended use. Never interactive.
"""

from __future__ import annotations

import asyncio
import logging
import threading

from azure.core.exceptions import ClientAuthenticationError
from azure.identity import ClientSecretCredential

from insights_query.credentials.session import session_from_token
from insights_query.errors import AuthFlowFailedError
from insights_query.models import Account, CredentialSession, ResolvedConfig

logger = logging.getLogger("insights-query.credentials")


class ClientCredentialsFlow:
    name = "client_credentials"

    def __init__(self):
        self._credentials: dict[tuple[str, str, str], ClientSecretCredential] = {}
        self._lock = threading.Lock()

    def _credential(self, tenant_id: str, client_id: str, secret: str) -> ClientSecretCredential:
        key = (tenant_id, client_id, secret)
        with self._lock:
            if key not in self._credentials:
                self._credentials[key] = ClientSecretCredential(tenant_id, client_id, secret)
            return self._credentials[key]

    async def acquire(
        self, config: ResolvedConfig, scope: str, interactive: bool,
    ) -> CredentialSession:
        if not config.client_id or not config.client_secret:
            raise AuthFlowFailedError("Client credentials flow requires clientId and clientSecret")
        tenant_id = config.tenant_id.strip()
        if not tenant_id:
            raise AuthFlowFailedError("Client credentials flow requires tenantId")

        credential = self._credential(tenant_id, config.client_id, config.client_secret)
        try:
            token = await asyncio.to_thread(credential.get_token, scope)
        except ClientAuthenticationError as e:
            raise AuthFlowFailedError(f"Client credentials authentication failed: {e.message}") from e

        account = Account(id=config.client_id, label=f"ServicePrincipal:{config.client_id}")
        logger.info("Authenticated with service principal %s", config.client_id)
        return session_from_token(token, self.name, account.label, account)

    async def sign_out(self, config: ResolvedConfig) -> None:
        with self._lock:
            for key in [k for k in self._credentials if k[1] == config.client_id]:
                del self._credentials[key]
