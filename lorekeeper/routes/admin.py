from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Query

from lorekeeper.db import persistence
from lorekeeper.services.embedding_store import get_ingestion_queue
from lorekeeper.worker import job_backfill_embeddings, job_sweep_caches

router = APIRouter()


@router.get("/admin/audit")
def audit_log(limit: int = Query(default=50, ge=1, le=500)):
    return persistence.list_audit(limit)


@router.get("/admin/ingestion")
def ingestion_status() -> Dict:
    return get_ingestion_queue().stats()


@router.post("/admin/ingestion/drain")
async def drain_ingestion(timeout: float = Query(default=30.0, gt=0, le=300)) -> Dict:
    """Wait for queued embedding work to finish (bounded by `timeout`)."""
    queue = get_ingestion_queue()
    drained = await queue.join(timeout=timeout)
    return {"drained": drained, **queue.stats()}


@router.post("/admin/backfill")
async def backfill() -> Dict:
    """Queue every source that has no chunks yet. Safe to repeat."""
    return await job_backfill_embeddings(get_ingestion_queue())


@router.post("/admin/cache/sweep")
async def sweep_caches() -> Dict:
    return await job_sweep_caches()
