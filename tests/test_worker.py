import asyncio

from lorekeeper import worker
from lorekeeper.db import persistence
from lorekeeper.db.base import db_session
from lorekeeper.db.models import IngestionRun
from lorekeeper.memory.store import CacheEntry, InMemoryCacheStore
from lorekeeper.services import metrics
from lorekeeper.services.context_cache import ContextCacheManager, RemoteCacheProvider, reset_cache_manager
from lorekeeper.services.embedding_store import IngestionQueue

from conftest import make_source


def _runs():
    with db_session() as s:
        return [(r.job_type, r.requested, r.success, r.error_count) for r in s.query(IngestionRun).all()]


def test_backfill_job_records_a_run(db):
    cid = persistence.create_campaign("Backfill job")["id"]
    a = make_source(cid, name="A", text="harpies")["id"]
    b = make_source(cid, name="B", text="griffons")["id"]

    seen = []

    async def ingest(sid):
        seen.append(sid)

    async def scenario():
        q = IngestionQueue(maxsize=10, workers=1, ingest=ingest)
        await q.start()
        out = await worker.job_backfill_embeddings(q)
        await q.stop(drain_timeout=5)
        return out

    out = asyncio.run(scenario())
    assert out == {"submitted": [a, b], "skipped": []}
    assert seen == [a, b]
    assert _runs() == [("embedding_backfill", 2, 2, 0)]


def test_backfill_job_counts_skipped_sources(db):
    cid = persistence.create_campaign("Stopped queue")["id"]
    a = make_source(cid, name="A", text="harpies")["id"]

    # a queue that was never started rejects every submission
    out = asyncio.run(worker.job_backfill_embeddings(IngestionQueue(maxsize=1, workers=1)))
    assert out == {"submitted": [], "skipped": [a]}
    assert _runs() == [("embedding_backfill", 1, 0, 1)]


def test_cache_sweep_job(db):
    class Provider(RemoteCacheProvider):
        name = "test"

    store = InMemoryCacheStore()
    store.put(CacheEntry("campaign:1:x", 1, "cachedContents/old", expires_at=0.0))
    reset_cache_manager(ContextCacheManager(Provider(), store, clock=lambda: 10.0))
    try:
        assert asyncio.run(worker.job_sweep_caches()) == {"dropped": 1}
    finally:
        reset_cache_manager()
    assert len(store) == 0
    assert _runs() == [("cache_sweep", 1, 1, 0)]


def test_scheduler_registers_jobs():
    sched = worker.build_scheduler(IngestionQueue(maxsize=1, workers=1))
    assert sorted(j.id for j in sched.get_jobs()) == ["cache_sweep", "embedding_backfill"]


def test_run_metrics_aggregate_calls():
    metrics.begin_run()
    metrics.record_llm("openai", "m", latency_ms=10, ok=True)
    metrics.record_llm("openai", "m", latency_ms=30, ok=False)
    metrics.record_fallback("embed_offline")
    out = metrics.end_run()
    assert out["llm"]["openai:m"]["calls"] == 2
    assert out["llm"]["openai:m"]["errors"] == 1
    assert out["llm"]["openai:m"]["latency"]["max"] == 30
    assert out["fallbacks"] == {"embed_offline": 1}
    # outside a run, recording is a no-op
    metrics.record_llm("openai", "m", latency_ms=5)
    assert metrics.end_run() == {"llm": {}, "fallbacks": {}}
