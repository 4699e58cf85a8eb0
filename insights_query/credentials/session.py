"""
Session helpers shared by the credential flows.

Token claims are decoded without signature verification, for display only
(account id and label); nothing here is used for authorization.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from azure.core.credentials import AccessToken

from insights_query.models import Account, CredentialSession

# Assumed lifetime of a host-provided token that carries no ``exp`` claim.
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


def token_claims(token: str) -> dict:
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return {}


def account_from_token(token: str, fallback_label: str) -> Account:
    claims = token_claims(token)
    account_id = claims.get("oid") or claims.get("sub") or claims.get("appid") or "unknown"
    label = (
        claims.get("upn")
        or claims.get("preferred_username")
        or claims.get("unique_name")
        or claims.get("name")
        or fallback_label
    )
    return Account(id=account_id, label=label)


def token_expiry(token: str) -> datetime:
    exp = token_claims(token).get("exp")
    if isinstance(exp, (int, float)):
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    return datetime.now(timezone.utc) + DEFAULT_TOKEN_LIFETIME


def session_from_token(
    token: AccessToken,
    flow: str,
    fallback_label: str,
    account: Account | None = None,
) -> CredentialSession:
    """Wrap an azure-core AccessToken as a CredentialSession."""
    return CredentialSession(
        access_token=token.token,
        expires_on=datetime.fromtimestamp(token.expires_on, tz=timezone.utc),
        account=account or account_from_token(token.token, fallback_label),
        flow=flow,
    )
