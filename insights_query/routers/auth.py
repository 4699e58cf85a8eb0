"""
Auth router — GET /auth/status, POST /auth/test

/auth/status probes silently and never prompts. /auth/test acquires a
token with the executor's interactive setting and reports the account.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from insights_query.credentials import AuthStatus
from insights_query.executor import QueryExecutor, get_executor
from insights_query.models import AuthStatusResponse

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/status", response_model=AuthStatusResponse)
async def auth_status(
    profile: str | None = Query(default=None),
    executor: QueryExecutor = Depends(get_executor),
):
    config = executor.resolve(profile)
    probe = await executor.auth_status(config.profile_name)
    return AuthStatusResponse(
        profile=config.profile_name,
        auth_flow=config.auth_flow,
        status=probe.status.value,
        authenticated=probe.authenticated,
        account=probe.session.account.label if probe.session else None,
        expires_on=probe.session.expires_on if probe.session else None,
        error=probe.error,
    )


@router.post("/test", response_model=AuthStatusResponse)
async def auth_test(
    profile: str | None = Query(default=None),
    executor: QueryExecutor = Depends(get_executor),
):
    """Acquire a token; AuthError is mapped to 401 by the app's handler."""
    config = executor.resolve(profile)
    session = await executor.authenticate(config.profile_name, interactive=executor.interactive)
    return AuthStatusResponse(
        profile=config.profile_name,
        auth_flow=config.auth_flow,
        status=AuthStatus.AUTHENTICATED.value,
        authenticated=True,
        account=session.account.label,
        expires_on=session.expires_on,
    )
