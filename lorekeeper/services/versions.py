from __future__ import annotations

import logging
from typing import List, Optional

from lorekeeper.config import history_limit
from lorekeeper.db.base import db_session
from lorekeeper.db.models import Document, DocumentHistory
from lorekeeper.errors import NotFoundError
from lorekeeper.services import locks

logger = logging.getLogger(__name__)


def _campaign_of(document_id: int) -> int:
    with db_session() as s:
        row = s.query(Document.campaign_id).filter(Document.id == document_id).first()
    if row is None:
        raise NotFoundError(f"Document {document_id} not found")
    return row[0]


def save_document(document_id: int, content: str, *, limit: Optional[int] = None) -> dict:
    """Snapshot the current content into history, then overwrite it.

    The history row holds the pre-save content and version. History is
    capped per document; the oldest snapshots are evicted first. Saves wait
    for a running deletion of the owning campaign (campaign lock, then
    document lock).
    """
    if limit is None:
        limit = history_limit()
    if limit < 1:
        raise ValueError(f"history limit must be at least 1, got {limit}")
    campaign_id = _campaign_of(document_id)
    with locks.campaign_lock(campaign_id), locks.document_lock(document_id):
        with db_session() as s:
            doc = s.query(Document).filter(Document.id == document_id).with_for_update().first()
            if doc is None:
                raise NotFoundError(f"Document {document_id} not found")
            ids = [
                r[0]
                for r in s.query(DocumentHistory.id)
                .filter(DocumentHistory.document_id == document_id)
                .order_by(DocumentHistory.created_at.asc(), DocumentHistory.id.asc())
                .all()
            ]
            evict = ids[: max(0, len(ids) - limit + 1)]
            if evict:
                s.query(DocumentHistory).filter(DocumentHistory.id.in_(evict)).delete(synchronize_session=False)
            s.add(DocumentHistory(document_id=doc.id, content=doc.content, version=doc.version))
            previous = doc.version
            doc.content = content
            doc.version = previous + 1
            s.flush()
            logger.info("versions: doc=%s saved v%d -> v%d (evicted=%d)", document_id, previous, doc.version, len(evict))
            return {"id": doc.id, "version": doc.version, "history_evicted": len(evict)}


def restore_version(history_id: int) -> dict:
    """Return a snapshot as working content. Read-only: persisting it is a separate save."""
    with db_session() as s:
        entry = s.query(DocumentHistory).filter(DocumentHistory.id == history_id).first()
        if entry is None:
            raise NotFoundError(f"History entry {history_id} not found")
        return {
            "id": entry.id,
            "document_id": entry.document_id,
            "version": entry.version,
            "content": entry.content,
        }


def list_history(document_id: int) -> List[dict]:
    with db_session() as s:
        if s.query(Document.id).filter(Document.id == document_id).first() is None:
            raise NotFoundError(f"Document {document_id} not found")
        rows = (
            s.query(DocumentHistory.id, DocumentHistory.version, DocumentHistory.created_at)
            .filter(DocumentHistory.document_id == document_id)
            .order_by(DocumentHistory.created_at.desc(), DocumentHistory.id.desc())
            .all()
        )
        return [{"id": i, "version": v, "created_at": c} for i, v, c in rows]


def delete_document(document_id: int) -> None:
    campaign_id = _campaign_of(document_id)
    with locks.campaign_lock(campaign_id), locks.document_lock(document_id):
        with db_session() as s:
            doc = s.query(Document).filter(Document.id == document_id).with_for_update().first()
            if doc is None:
                raise NotFoundError(f"Document {document_id} not found")
            removed = (
                s.query(DocumentHistory)
                .filter(DocumentHistory.document_id == document_id)
                .delete(synchronize_session=False)
            )
            s.delete(doc)
    logger.info("versions: doc=%s deleted with %d history entries", document_id, removed)
