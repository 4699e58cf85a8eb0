"""Tests for the credential broker and its flows.

azure-identity credential classes are patched out; no network or az CLI
is touched.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import jwt
import pytest
from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError, ServiceRequestError
from azure.identity import AuthenticationRequiredError, CredentialUnavailableError

from insights_query.credentials import AuthStatus, CredentialBroker
from insights_query.credentials.azure_cli import AzureCliFlow
from insights_query.credentials.client_credentials import ClientCredentialsFlow
from insights_query.credentials.device_code import DEFAULT_CLIENT_ID, DeviceCodeFlow
from insights_query.credentials.host_integrated import (
    EnvironmentTokenBroker,
    HostIntegratedFlow,
    host_scopes,
)
from insights_query.credentials.session import account_from_token, token_expiry
from insights_query.errors import (
    AuthCancelledError,
    AuthFlowFailedError,
    NoSessionError,
    SignOutUnsupportedError,
)
from insights_query.models import Account, CredentialSession
from insights_query.paths import APP_INSIGHTS_SCOPE

SCOPE = APP_INSIGHTS_SCOPE


def _jwt(**claims) -> str:
    return jwt.encode(claims, "not-a-real-key", algorithm="HS256")


def _access_token(token: str = "tok", minutes: int = 60) -> AccessToken:
    return AccessToken(token, int(time.time()) + minutes * 60)


def _session(minutes: int = 60) -> CredentialSession:
    return CredentialSession(
        access_token="token-abc",
        expires_on=datetime.now(timezone.utc) + timedelta(minutes=minutes),
        account=Account(id="oid-1", label="jane@contoso.com"),
        flow="azure_cli",
    )


def _flow(session=None, error=None):
    flow = MagicMock()
    flow.name = "azure_cli"
    if error is not None:
        flow.acquire = AsyncMock(side_effect=error)
    else:
        flow.acquire = AsyncMock(return_value=session)
    flow.sign_out = AsyncMock()
    return flow


# ---------------------------------------------------------------------------
# Token claims
# ---------------------------------------------------------------------------


class TestSessionHelpers:
    def test_account_from_claims(self):
        token = _jwt(oid="oid-7", upn="jane@contoso.com")
        account = account_from_token(token, "fallback")
        assert account.id == "oid-7"
        assert account.label == "jane@contoso.com"

    def test_opaque_token_uses_fallback(self):
        account = account_from_token("opaque-token", "Host account")
        assert account.id == "unknown"
        assert account.label == "Host account"

    def test_expiry_from_exp_claim(self):
        exp = int(time.time()) + 600
        assert token_expiry(_jwt(exp=exp)) == datetime.fromtimestamp(exp, tz=timezone.utc)


# ---------------------------------------------------------------------------
# Host-integrated flow
# ---------------------------------------------------------------------------


class TestHostScopes:
    def test_tenant_scope_first(self):
        assert host_scopes(SCOPE, "t-123") == ["TENANT:t-123", SCOPE]

    @pytest.mark.parametrize("tenant", ["", "   ", None])
    def test_blank_tenant_adds_nothing(self, tenant):
        assert host_scopes(SCOPE, tenant) == [SCOPE]


class TestHostIntegratedFlow:
    @pytest.mark.asyncio
    async def test_passes_scopes_and_mode(self, config_factory):
        host = MagicMock()
        host.get_session = AsyncMock(return_value=_session())
        flow = HostIntegratedFlow(host)

        await flow.acquire(config_factory(), SCOPE, interactive=False)

        host.get_session.assert_awaited_once_with(
            ["TENANT:t-123", SCOPE], create_if_none=False, silent=True,
        )

    @pytest.mark.asyncio
    async def test_no_session_silent(self, config_factory):
        host = MagicMock()
        host.get_session = AsyncMock(return_value=None)

        with pytest.raises(NoSessionError):
            await HostIntegratedFlow(host).acquire(config_factory(), SCOPE, interactive=False)

    @pytest.mark.asyncio
    async def test_no_session_interactive_is_cancel(self, config_factory):
        host = MagicMock()
        host.get_session = AsyncMock(return_value=None)

        with pytest.raises(AuthCancelledError):
            await HostIntegratedFlow(host).acquire(config_factory(), SCOPE, interactive=True)

    @pytest.mark.asyncio
    async def test_host_failure(self, config_factory):
        host = MagicMock()
        host.get_session = AsyncMock(side_effect=RuntimeError("host crashed"))

        with pytest.raises(AuthFlowFailedError, match="host crashed"):
            await HostIntegratedFlow(host).acquire(config_factory(), SCOPE, interactive=True)

    @pytest.mark.asyncio
    async def test_sign_out_unsupported(self, config_factory):
        with pytest.raises(SignOutUnsupportedError):
            await HostIntegratedFlow(MagicMock()).sign_out(config_factory())

    @pytest.mark.asyncio
    async def test_environment_broker(self):
        token = _jwt(oid="oid-1", preferred_username="ops@contoso.com", exp=int(time.time()) + 600)
        broker = EnvironmentTokenBroker({"INSIGHTS_ACCESS_TOKEN": token})

        session = await broker.get_session([SCOPE], create_if_none=False, silent=True)

        assert session.access_token == token
        assert session.account.label == "ops@contoso.com"
        assert session.flow == "host_integrated"

    @pytest.mark.asyncio
    async def test_environment_broker_without_token(self):
        broker = EnvironmentTokenBroker({})
        assert await broker.get_session([SCOPE], create_if_none=True, silent=False) is None


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------


class TestCredentialBroker:
    @pytest.mark.asyncio
    async def test_dispatches_to_profile_flow(self, config_factory):
        session = _session()
        flow = _flow(session)
        broker = CredentialBroker({"azure_cli": flow})

        result = await broker.acquire_token(config_factory(), interactive=False)

        assert result is session
        flow.acquire.assert_awaited_once()
        _, scope, interactive = flow.acquire.await_args.args
        assert scope == SCOPE
        assert interactive is False

    @pytest.mark.asyncio
    async def test_expired_session_is_no_session(self, config_factory):
        broker = CredentialBroker({"azure_cli": _flow(_session(minutes=-5))})

        with pytest.raises(NoSessionError, match="expired"):
            await broker.acquire_token(config_factory())

    @pytest.mark.asyncio
    async def test_unknown_flow(self, config_factory):
        with pytest.raises(AuthFlowFailedError, match="Unknown authFlow"):
            await CredentialBroker().acquire_token(config_factory(auth_flow="kerberos"))

    @pytest.mark.asyncio
    async def test_azure_error_is_flow_failure(self, config_factory):
        broker = CredentialBroker({"azure_cli": _flow(error=ServiceRequestError("dns failure"))})

        with pytest.raises(AuthFlowFailedError, match="dns failure"):
            await broker.acquire_token(config_factory())

    @pytest.mark.asyncio
    async def test_probe_states(self, config_factory):
        cfg = config_factory()

        ok = await CredentialBroker({"azure_cli": _flow(_session())}).probe(cfg)
        missing = await CredentialBroker({"azure_cli": _flow(error=NoSessionError("none"))}).probe(cfg)
        failed = await CredentialBroker({"azure_cli": _flow(error=AuthFlowFailedError("bad"))}).probe(cfg)

        assert ok.status == AuthStatus.AUTHENTICATED and ok.authenticated
        assert missing.status == AuthStatus.NOT_AUTHENTICATED
        assert failed.status == AuthStatus.FAILED
        assert failed.error == "bad"

    @pytest.mark.asyncio
    async def test_probe_never_interactive(self, config_factory):
        flow = _flow(_session())
        await CredentialBroker({"azure_cli": flow}).is_authenticated(config_factory())
        assert flow.acquire.await_args.args[2] is False

    @pytest.mark.asyncio
    async def test_host_broker_is_wired(self, config_factory):
        host = MagicMock()
        host.get_session = AsyncMock(return_value=_session())
        broker = CredentialBroker(host_broker=host)

        await broker.acquire_token(config_factory(auth_flow="host_integrated"))

        host.get_session.assert_awaited_once()


# ---------------------------------------------------------------------------
# Azure flows
# ---------------------------------------------------------------------------


class TestAzureCliFlow:
    @pytest.mark.asyncio
    async def test_token(self, config_factory):
        with patch("insights_query.credentials.azure_cli.AzureCliCredential") as cred_cls:
            cred_cls.return_value.get_token.return_value = _access_token(_jwt(oid="o", upn="me@x.com"))
            flow = AzureCliFlow()

            session = await flow.acquire(config_factory(), SCOPE, interactive=False)
            await flow.acquire(config_factory(), SCOPE, interactive=False)

        cred_cls.assert_called_once_with(tenant_id="t-123")
        assert session.account.label == "me@x.com"
        assert session.flow == "azure_cli"

    @pytest.mark.asyncio
    async def test_not_logged_in(self, config_factory):
        with patch("insights_query.credentials.azure_cli.AzureCliCredential") as cred_cls:
            cred_cls.return_value.get_token.side_effect = CredentialUnavailableError("az not found")

            with pytest.raises(NoSessionError, match="az login"):
                await AzureCliFlow().acquire(config_factory(), SCOPE, interactive=True)

    @pytest.mark.asyncio
    async def test_auth_failure(self, config_factory):
        with patch("insights_query.credentials.azure_cli.AzureCliCredential") as cred_cls:
            cred_cls.return_value.get_token.side_effect = ClientAuthenticationError("denied")

            with pytest.raises(AuthFlowFailedError, match="denied"):
                await AzureCliFlow().acquire(config_factory(), SCOPE, interactive=True)


class TestDeviceCodeFlow:
    @pytest.mark.asyncio
    async def test_silent_token(self, config_factory):
        with patch("insights_query.credentials.device_code.DeviceCodeCredential") as cred_cls:
            cred_cls.return_value.get_token.return_value = _access_token()

            await DeviceCodeFlow().acquire(config_factory(), SCOPE, interactive=False)

        kwargs = cred_cls.call_args.kwargs
        assert kwargs["client_id"] == DEFAULT_CLIENT_ID
        assert kwargs["tenant_id"] == "t-123"
        assert kwargs["disable_automatic_authentication"] is True
        cred_cls.return_value.authenticate.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_session_without_interaction(self, config_factory):
        with patch("insights_query.credentials.device_code.DeviceCodeCredential") as cred_cls:
            cred_cls.return_value.get_token.side_effect = AuthenticationRequiredError([SCOPE])

            with pytest.raises(NoSessionError):
                await DeviceCodeFlow().acquire(config_factory(), SCOPE, interactive=False)

        cred_cls.return_value.authenticate.assert_not_called()

    @pytest.mark.asyncio
    async def test_interactive_sign_in(self, config_factory):
        with patch("insights_query.credentials.device_code.DeviceCodeCredential") as cred_cls:
            credential = cred_cls.return_value
            credential.get_token.side_effect = [AuthenticationRequiredError([SCOPE]), _access_token()]
            credential.authenticate.return_value = MagicMock(
                home_account_id="home-1", username="jane@contoso.com",
            )

            session = await DeviceCodeFlow().acquire(config_factory(), SCOPE, interactive=True)

        credential.authenticate.assert_called_once_with(scopes=[SCOPE])
        assert session.account.label == "jane@contoso.com"
        assert session.account.id == "home-1"

    @pytest.mark.asyncio
    async def test_sign_out_forgets_credential(self, config_factory):
        with patch("insights_query.credentials.device_code.DeviceCodeCredential") as cred_cls:
            cred_cls.return_value.get_token.return_value = _access_token()
            flow = DeviceCodeFlow()
            cfg = config_factory()

            await flow.acquire(cfg, SCOPE, interactive=False)
            await flow.sign_out(cfg)
            await flow.acquire(cfg, SCOPE, interactive=False)

        assert cred_cls.call_count == 2


class TestClientCredentialsFlow:
    @pytest.mark.asyncio
    async def test_requires_id_and_secret(self, config_factory):
        with pytest.raises(AuthFlowFailedError, match="clientId and clientSecret"):
            await ClientCredentialsFlow().acquire(
                config_factory(auth_flow="client_credentials"), SCOPE, interactive=False,
            )

    @pytest.mark.asyncio
    async def test_requires_tenant(self, config_factory):
        cfg = config_factory(auth_flow="client_credentials", tenant_id=" ", client_id="cid", client_secret="s")
        with pytest.raises(AuthFlowFailedError, match="tenantId"):
            await ClientCredentialsFlow().acquire(cfg, SCOPE, interactive=False)

    @pytest.mark.asyncio
    async def test_service_principal_account(self, config_factory):
        cfg = config_factory(auth_flow="client_credentials", client_id="cid", client_secret="s")
        with patch("insights_query.credentials.client_credentials.ClientSecretCredential") as cred_cls:
            cred_cls.return_value.get_token.return_value = _access_token()

            session = await ClientCredentialsFlow().acquire(cfg, SCOPE, interactive=False)

        cred_cls.assert_called_once_with("t-123", "cid", "s")
        assert session.account.label == "ServicePrincipal:cid"
        assert session.expires_on > datetime.now(timezone.utc) + timedelta(minutes=50)

    @pytest.mark.asyncio
    async def test_bad_secret(self, config_factory):
        cfg = config_factory(auth_flow="client_credentials", client_id="cid", client_secret="wrong")
        with patch("insights_query.credentials.client_credentials.ClientSecretCredential") as cred_cls:
            cred_cls.return_value.get_token.side_effect = ClientAuthenticationError("AADSTS7000215")

            with pytest.raises(AuthFlowFailedError, match="AADSTS7000215"):
                await ClientCredentialsFlow().acquire(cfg, SCOPE, interactive=False)
