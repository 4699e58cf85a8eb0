"""
Profiles router — GET /profiles

Lists the selectable profiles of the config document (base profiles
hidden) and marks the default. Without a document the environment
fallback shows up as a single ``default`` profile.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from insights_query.executor import QueryExecutor, get_executor
from insights_query.profile_store import ProfileStore

router = APIRouter(tags=["profiles"])


@router.get("/profiles")
async def list_profiles(executor: QueryExecutor = Depends(get_executor)):
    if isinstance(executor.source, ProfileStore):
        summaries = executor.source.list_profiles()
        return {
            "profiles": [
                {
                    "name": s.name,
                    "connectionName": s.connection_name,
                    "authFlow": s.auth_flow,
                    "extends": s.extends,
                    "isDefault": s.is_default,
                }
                for s in summaries
            ],
            "source": str(executor.source.path),
        }

    config = executor.resolve()
    return {
        "profiles": [{
            "name": config.profile_name,
            "connectionName": config.connection_name,
            "authFlow": config.auth_flow,
            "extends": None,
            "isDefault": True,
        }],
        "source": "environment",
    }
