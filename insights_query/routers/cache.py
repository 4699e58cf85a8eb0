"""
Cache router — GET /cache/stats, POST /cache/clear, POST /cache/cleanup

All three act on the cache namespace of the selected profile.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from insights_query.executor import QueryExecutor, get_executor

router = APIRouter(prefix="/cache", tags=["cache"])


@router.get("/stats")
async def cache_stats(
    profile: str | None = Query(default=None),
    executor: QueryExecutor = Depends(get_executor),
):
    return asdict(executor.cache_stats(profile))


@router.post("/clear")
async def cache_clear(
    profile: str | None = Query(default=None),
    executor: QueryExecutor = Depends(get_executor),
):
    return asdict(executor.clear_cache(profile))


@router.post("/cleanup")
async def cache_cleanup(
    profile: str | None = Query(default=None),
    executor: QueryExecutor = Depends(get_executor),
):
    return {"removed": executor.cleanup_cache(profile)}
