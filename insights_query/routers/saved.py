"""
Saved queries router — GET /saved, GET /saved/search, POST /saved
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from insights_query.executor import QueryExecutor, get_executor
from insights_query.models import SaveQueryRequest
from insights_query.queries import SavedQuery

router = APIRouter(prefix="/saved", tags=["saved"])


@router.get("", response_model=list[SavedQuery])
async def list_saved(
    profile: str | None = Query(default=None),
    executor: QueryExecutor = Depends(get_executor),
):
    return executor.saved_queries(profile).list_all()


@router.get("/search", response_model=list[SavedQuery])
async def search_saved(
    terms: list[str] = Query(default=[]),
    profile: str | None = Query(default=None),
    executor: QueryExecutor = Depends(get_executor),
):
    return executor.saved_queries(profile).search(terms)


@router.get("/categories")
async def list_categories(
    profile: str | None = Query(default=None),
    executor: QueryExecutor = Depends(get_executor),
):
    return {"categories": executor.saved_queries(profile).categories()}


@router.post("", status_code=201)
async def save_query(req: SaveQueryRequest, executor: QueryExecutor = Depends(get_executor)):
    store = executor.saved_queries(req.profile)
    try:
        path = store.save(
            req.name, req.kql,
            purpose=req.purpose,
            use_case=req.use_case,
            tags=req.tags,
            category=req.category,
            overwrite=req.overwrite,
        )
    except FileExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"path": str(path)}
