"""
Device code flow — interactive sign-in on another device.

DeviceCodeCredential is created with automatic authentication disabled so
get_token() never prompts on its own: a silent attempt runs first and the
device code is only requested when the caller allows interaction.
Credential instances are kept per (tenant, client id), so the SDK's
in-memory token cache carries the session between queries.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from datetime import datetime
from typing import Callable

from azure.core.exceptions import ClientAuthenticationError
from azure.identity import AuthenticationRequiredError, DeviceCodeCredential

from insights_query.credentials.session import session_from_token
from insights_query.errors import AuthFlowFailedError, NoSessionError
from insights_query.models import Account, CredentialSession, ResolvedConfig

logger = logging.getLogger("insights-query.credentials")

# Well-known public client id of the Azure CLI, used when a profile has none.
DEFAULT_CLIENT_ID = "04b07795-8ddb-461a-bbee-02f9e1bf7b46"

PromptCallback = Callable[[str, str, datetime], None]


def print_device_code(verification_uri: str, user_code: str, expires_on: datetime) -> None:
    message = f"To sign in, open {verification_uri} and enter the code {user_code}"
    logger.info("Device code sign-in requested (expires %s)", expires_on.isoformat())
    print(f"\n=== DEVICE CODE AUTHENTICATION ===\n{message}\n", file=sys.stderr)


class DeviceCodeFlow:
    name = "device_code"

    def __init__(self, prompt_callback: PromptCallback | None = None):
        self._prompt = prompt_callback or print_device_code
        self._credentials: dict[tuple[str, str], DeviceCodeCredential] = {}
        self._accounts: dict[tuple[str, str], Account] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(config: ResolvedConfig) -> tuple[str, str]:
        return config.tenant_id.strip(), config.client_id or DEFAULT_CLIENT_ID

    def _credential(self, config: ResolvedConfig) -> DeviceCodeCredential:
        key = self._key(config)
        with self._lock:
            if key not in self._credentials:
                tenant_id, client_id = key
                self._credentials[key] = DeviceCodeCredential(
                    client_id=client_id,
                    tenant_id=tenant_id or "organizations",
                    prompt_callback=self._prompt,
                    disable_automatic_authentication=True,
                )
            return self._credentials[key]

    async def acquire(
        self, config: ResolvedConfig, scope: str, interactive: bool,
    ) -> CredentialSession:
        key = self._key(config)
        credential = self._credential(config)
        try:
            token = await asyncio.to_thread(credential.get_token, scope)
        except AuthenticationRequiredError:
            if not interactive:
                raise NoSessionError(
                    "No device code session for this profile. Sign in interactively first."
                ) from None
            token = await self._sign_in(credential, key, scope)
        except ClientAuthenticationError as e:
            raise AuthFlowFailedError(f"Device code authentication failed: {e.message}") from e

        return session_from_token(token, self.name, "Device code user", self._accounts.get(key))

    async def _sign_in(self, credential: DeviceCodeCredential, key: tuple[str, str], scope: str):
        try:
            record = await asyncio.to_thread(credential.authenticate, scopes=[scope])
            token = await asyncio.to_thread(credential.get_token, scope)
        except ClientAuthenticationError as e:
            raise AuthFlowFailedError(f"Device code authentication failed: {e.message}") from e
        self._accounts[key] = Account(id=record.home_account_id, label=record.username)
        logger.info("Authenticated as: %s", record.username)
        return token

    async def sign_out(self, config: ResolvedConfig) -> None:
        """Forget the in-memory session; the next acquire prompts again."""
        key = self._key(config)
        with self._lock:
            self._credentials.pop(key, None)
            self._accounts.pop(key, None)
