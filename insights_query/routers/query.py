"""
Query router — POST /query

Runs KQL through the shared executor. Query failures (config, auth,
backend) come back as 200 with an error-typed body so callers always get
the same envelope.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from insights_query.executor import QueryExecutor, get_executor
from insights_query.models import QueryRequest, QueryResult

logger = logging.getLogger("insights-query")

router = APIRouter(tags=["query"])


@router.post("/query", response_model=QueryResult)
async def run_query(req: QueryRequest, executor: QueryExecutor = Depends(get_executor)):
    logger.info("POST /query  profile=%s  kql=%.200s", req.profile, req.kql)
    result = await executor.execute(req.kql, req.profile)
    if result.type == "error":
        logger.warning("Query error (%s): %s", result.error_category, result.summary)
    return result
