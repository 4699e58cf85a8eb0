"""
Azure CLI flow — reuses the account signed in with ``az login``.

AzureCliCredential shells out to ``az account get-access-token``; the
blocking call runs in asyncio.to_thread().
"""

from __future__ import annotations

import asyncio
import logging
import threading

from azure.core.exceptions import ClientAuthenticationError
from azure.identity import AzureCliCredential, CredentialUnavailableError

from insights_query.credentials.session import session_from_token
from insights_query.errors import AuthFlowFailedError, NoSessionError, SignOutUnsupportedError
from insights_query.models import CredentialSession, ResolvedConfig

logger = logging.getLogger("insights-query.credentials")


class AzureCliFlow:
    name = "azure_cli"

    def __init__(self):
        self._credentials: dict[str, AzureCliCredential] = {}
        self._lock = threading.Lock()

    def _credential(self, tenant_id: str) -> AzureCliCredential:
        with self._lock:
            if tenant_id not in self._credentials:
                self._credentials[tenant_id] = AzureCliCredential(tenant_id=tenant_id)
            return self._credentials[tenant_id]

    async def acquire(
        self, config: ResolvedConfig, scope: str, interactive: bool,
    ) -> CredentialSession:
        credential = self._credential(config.tenant_id.strip())
        try:
            token = await asyncio.to_thread(credential.get_token, scope)
        except CredentialUnavailableError as e:
            raise NoSessionError(
                "Azure CLI is not installed or not signed in. "
                "Run 'az login' and try again."
            ) from e
        except ClientAuthenticationError as e:
            raise AuthFlowFailedError(f"Azure CLI authentication failed: {e.message}") from e
        return session_from_token(token, self.name, "Azure CLI user")

    async def sign_out(self, config: ResolvedConfig) -> None:
        raise SignOutUnsupportedError("Azure CLI sessions are ended with 'az logout'")
