from __future__ import annotations

import asyncio
import logging
import os
import uuid
from typing import Dict, Optional

from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from zoneinfo import ZoneInfo

# Load env early; harmless when config vars come from the platform
load_dotenv()

from lorekeeper.config import env_int
from lorekeeper.db.base import init_db, db_session
from lorekeeper.db.models import IngestionRun
from lorekeeper.services.context_cache import get_cache_manager
from lorekeeper.services.embedding_store import (
    IngestionQueue,
    backfill_missing,
    get_ingestion_queue,
    sources_missing_chunks,
)
from lorekeeper.services.metrics import begin_run, end_run

log = logging.getLogger("worker")


async def job_backfill_embeddings(queue: Optional[IngestionQueue] = None) -> Dict:
    """Queue every source that has text but no stored chunks."""
    queue = queue or get_ingestion_queue()
    begin_run()
    try:
        # submit on the loop thread; asyncio.Queue is not thread-safe
        missing = await asyncio.to_thread(sources_missing_chunks)
        result = backfill_missing(queue, missing)
    except Exception as e:
        log.exception("backfill failed: %s", e)
        _record_run("embedding_backfill", {"requested": 0, "success": 0, "errors": [str(e)], "metrics": end_run()})
        return {"submitted": [], "skipped": [], "error": str(e)}
    summary = {
        "requested": len(result["submitted"]) + len(result["skipped"]),
        "success": len(result["submitted"]),
        "errors": [{"source_id": sid, "error": "queue full"} for sid in result["skipped"]],
        **result,
    }
    summary["metrics"] = end_run()
    log.info("backfill: submitted=%d skipped=%d", len(result["submitted"]), len(result["skipped"]))
    _record_run("embedding_backfill", summary)
    return result


async def job_sweep_caches() -> Dict:
    """Drop expired context caches and delete them provider-side."""
    begin_run()
    dropped = await get_cache_manager().sweep_expired()
    summary = {"requested": dropped, "success": dropped, "errors": [], "metrics": end_run()}
    if dropped:
        log.info("cache sweep: dropped %d expired entries", dropped)
        _record_run("cache_sweep", summary)
    return {"dropped": dropped}


def _record_run(job_type: str, summary: dict) -> None:
    try:
        with db_session() as s:
            s.add(
                IngestionRun(
                    id=str(uuid.uuid4()),
                    job_type=job_type,
                    requested=int(summary.get("requested") or 0),
                    success=int(summary.get("success") or 0),
                    error_count=int(len(summary.get("errors", []))),
                    data=summary,
                )
            )
    except Exception as e:
        log.warning("record_run failed: %s", e)


def build_scheduler(queue: IngestionQueue) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=ZoneInfo("UTC"))
    # Expire stale caches well inside their TTL
    scheduler.add_job(job_sweep_caches, "interval", minutes=env_int("CACHE_SWEEP_MINUTES", 5), id="cache_sweep")
    # Reconcile sources whose ingestion failed or was interrupted
    scheduler.add_job(job_backfill_embeddings, "interval", minutes=env_int("BACKFILL_MINUTES", 60),
                      kwargs={"queue": queue}, id="embedding_backfill")
    return scheduler


async def main() -> None:
    """One-shot backfill outside the web process."""
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    init_db()
    queue = IngestionQueue()
    await queue.start()
    try:
        await job_backfill_embeddings(queue)
        await queue.join()
    finally:
        await queue.stop()
    log.info("backfill finished: %s", queue.stats())


if __name__ == "__main__":
    asyncio.run(main())
