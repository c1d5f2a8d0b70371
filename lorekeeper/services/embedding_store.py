from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import numpy as np
from sqlalchemy import func

from lorekeeper.config import env_float, env_int
from lorekeeper.db.base import db_session
from lorekeeper.db.models import SourceBook, SourceChunk
from lorekeeper.services.chunker import chunk_text
from lorekeeper.services.embedder import embed_text

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Awaitable[Optional[np.ndarray]]]


@dataclass
class IngestResult:
    source_id: int
    chunk_count: int
    stored: int
    failed: int


def _load_source_text(source_id: int) -> Optional[str]:
    with db_session() as s:
        row = s.query(SourceBook.text_content).filter(SourceBook.id == source_id).first()
        return None if row is None else (row[0] or "")


def _store_chunks(source_id: int, pairs: List[Tuple[int, str, np.ndarray]]) -> bool:
    """Replace the source's chunks in one transaction. False if the source is gone."""
    with db_session() as s:
        if s.query(SourceBook.id).filter(SourceBook.id == source_id).first() is None:
            return False
        s.query(SourceChunk).filter(SourceChunk.source_id == source_id).delete(synchronize_session=False)
        for idx, text, vec in pairs:
            s.add(SourceChunk(source_id=source_id, chunk_index=idx, text=text, embedding=[float(x) for x in vec]))
        return True


async def ingest_source(
    source_id: int,
    *,
    embed: Optional[EmbedFn] = None,
    concurrency: Optional[int] = None,
    delay: Optional[float] = None,
    size: Optional[int] = None,
    overlap: Optional[int] = None,
) -> IngestResult:
    """Chunk a source's text, embed every chunk and persist the successful ones.

    A failed chunk is logged and skipped; the rest of the source still lands.
    """
    embed = embed or embed_text
    concurrency = max(1, concurrency if concurrency is not None else env_int("EMBED_CONCURRENCY", 2))
    delay = max(0.0, delay if delay is not None else env_float("EMBED_DELAY_SECONDS", 0.2))

    text = await asyncio.to_thread(_load_source_text, source_id)
    if text is None:
        logger.info("ingest: source %s no longer exists; skipping", source_id)
        return IngestResult(source_id, 0, 0, 0)
    chunks = chunk_text(text, size, overlap)
    if not chunks:
        return IngestResult(source_id, 0, 0, 0)

    sem = asyncio.Semaphore(concurrency)
    results: List[Optional[np.ndarray]] = [None] * len(chunks)

    async def _embed_one(i: int, chunk: str) -> None:
        async with sem:
            try:
                results[i] = await embed(chunk)
            except Exception as e:
                logger.warning("ingest: source=%s chunk=%d embed failed: %s", source_id, i, e)
            if delay:
                await asyncio.sleep(delay)

    await asyncio.gather(*[_embed_one(i, c) for i, c in enumerate(chunks)])

    pairs = [(i, chunks[i], v) for i, v in enumerate(results) if v is not None]
    failed = len(chunks) - len(pairs)
    if failed:
        logger.warning("ingest: source=%s %d/%d chunks failed to embed", source_id, failed, len(chunks))
    if not pairs:
        return IngestResult(source_id, len(chunks), 0, failed)
    kept = await asyncio.to_thread(_store_chunks, source_id, pairs)
    if not kept:
        logger.info("ingest: source %s deleted during ingestion; discarded %d vectors", source_id, len(pairs))
        return IngestResult(source_id, len(chunks), 0, failed)
    logger.info("ingest: source=%s stored=%d failed=%d", source_id, len(pairs), failed)
    return IngestResult(source_id, len(chunks), len(pairs), failed)


def chunk_counts(campaign_id: int) -> Dict[int, int]:
    with db_session() as s:
        rows = (
            s.query(SourceChunk.source_id, func.count(SourceChunk.id))
            .join(SourceBook, SourceBook.id == SourceChunk.source_id)
            .filter(SourceBook.campaign_id == campaign_id)
            .group_by(SourceChunk.source_id)
            .all()
        )
        return {sid: int(n) for sid, n in rows}


def sources_missing_chunks() -> List[int]:
    """Sources with text but no stored chunks (failed or interrupted ingestion)."""
    with db_session() as s:
        rows = (
            s.query(SourceBook.id)
            .outerjoin(SourceChunk, SourceChunk.source_id == SourceBook.id)
            .filter(SourceBook.text_content.isnot(None), SourceBook.text_content != "")
            .group_by(SourceBook.id)
            .having(func.count(SourceChunk.id) == 0)
            .order_by(SourceBook.id.asc())
            .all()
        )
        return [r[0] for r in rows]


class IngestionQueue:
    """Bounded queue of source ids consumed by a fixed set of asyncio workers."""

    def __init__(self, maxsize: Optional[int] = None, workers: Optional[int] = None,
                 ingest: Optional[Callable[[int], Awaitable[IngestResult]]] = None):
        self.maxsize = max(1, maxsize if maxsize is not None else env_int("INGEST_QUEUE_SIZE", 100))
        self.worker_count = max(1, workers if workers is not None else env_int("INGEST_WORKERS", 1))
        self._ingest = ingest or ingest_source
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._queued: set[int] = set()
        self.processed = 0
        self.failed = 0
        self.rejected = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._workers = [asyncio.create_task(self._run(i)) for i in range(self.worker_count)]
        logger.info("ingest: queue started (workers=%d maxsize=%d)", self.worker_count, self.maxsize)

    def submit(self, source_id: int) -> bool:
        """Enqueue without waiting. False when the queue is full or not running."""
        if self._queue is None:
            logger.warning("ingest: queue not running; source %s left for backfill", source_id)
            self.rejected += 1
            return False
        if source_id in self._queued:
            return True
        try:
            self._queue.put_nowait(source_id)
        except asyncio.QueueFull:
            self.rejected += 1
            logger.warning("ingest: queue full; source %s left for backfill", source_id)
            return False
        self._queued.add(source_id)
        return True

    async def _run(self, n: int) -> None:
        assert self._queue is not None
        while True:
            source_id = await self._queue.get()
            self._queued.discard(source_id)
            try:
                await self._ingest(source_id)
                self.processed += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failed += 1
                logger.exception("ingest: worker %d failed on source %s", n, source_id)
            finally:
                self._queue.task_done()

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until every submitted source has been processed."""
        if self._queue is None:
            return True
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def stop(self, drain_timeout: Optional[float] = 5.0) -> None:
        if not self._workers:
            return
        drained = await self.join(timeout=drain_timeout)
        if not drained:
            logger.warning("ingest: stopping with %d sources still queued", self.pending)
        for t in self._workers:
            t.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        self._queued.clear()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def stats(self) -> dict:
        return {
            "running": self.running,
            "pending": self.pending,
            "processed": self.processed,
            "failed": self.failed,
            "rejected": self.rejected,
            "maxsize": self.maxsize,
            "workers": self.worker_count,
        }


def backfill_missing(queue: IngestionQueue, missing: Optional[List[int]] = None) -> Dict[str, List[int]]:
    """Idempotent reconciliation: queue every source that has no chunks yet."""
    if missing is None:
        missing = sources_missing_chunks()
    submitted: List[int] = []
    skipped: List[int] = []
    for sid in missing:
        (submitted if queue.submit(sid) else skipped).append(sid)
    if missing:
        logger.info("ingest: backfill submitted=%d skipped=%d", len(submitted), len(skipped))
    return {"submitted": submitted, "skipped": skipped}


_queue: Optional[IngestionQueue] = None


def get_ingestion_queue() -> IngestionQueue:
    global _queue
    if _queue is None:
        _queue = IngestionQueue()
    return _queue


def reset_ingestion_queue() -> None:
    global _queue
    _queue = None
