"""Transactional cascading deletes for campaigns and sources.

Every delete runs in a single transaction: chunks before sources, history
before documents, the owning row last, then an audit record. Backing files
are removed only after the commit and only when no remaining row still
points at them (assigned copies share the library file).
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Set

from sqlalchemy.orm import Session

from lorekeeper.db.base import db_session
from lorekeeper.db.models import (
    AuditLog,
    Campaign,
    Document,
    DocumentHistory,
    GlobalSource,
    SourceBook,
    SourceChunk,
)
from lorekeeper.errors import CascadeDeleteError, NotFoundError
from lorekeeper.services import file_store, locks

logger = logging.getLogger(__name__)


def _delete_sources(s: Session, source_ids: List[int]) -> int:
    if not source_ids:
        return 0
    chunks = (
        s.query(SourceChunk)
        .filter(SourceChunk.source_id.in_(source_ids))
        .delete(synchronize_session=False)
    )
    s.query(SourceBook).filter(SourceBook.id.in_(source_ids)).delete(synchronize_session=False)
    return chunks


def _orphaned_paths(paths: Iterable[str]) -> List[str]:
    """Paths no longer referenced by any source row."""
    candidates: Set[str] = {p for p in paths if p}
    if not candidates:
        return []
    with db_session() as s:
        still_used = {
            r[0] for r in s.query(SourceBook.file_path).filter(SourceBook.file_path.in_(candidates)).all()
        }
        still_used |= {
            r[0] for r in s.query(GlobalSource.file_path).filter(GlobalSource.file_path.in_(candidates)).all()
        }
    return sorted(candidates - still_used)


def _cleanup_files(paths: Iterable[str]) -> int:
    try:
        orphans = _orphaned_paths(paths)
    except Exception as e:
        logger.warning("lifecycle: could not resolve file references: %s", e)
        return 0
    return file_store.remove_files(orphans)


def delete_campaign(campaign_id: int) -> dict:
    """Delete a campaign and everything it owns. Idempotent.

    A missing campaign is reported as success with ``deleted=False`` and
    writes no audit record.
    """
    with locks.campaign_lock(campaign_id):
        try:
            with db_session() as s:
                campaign = s.query(Campaign).filter(Campaign.id == campaign_id).with_for_update().first()
                if campaign is None:
                    return {
                        "success": True,
                        "deleted": False,
                        "message": "Campaign already deleted or does not exist.",
                    }
                name = campaign.name
                sources = s.query(SourceBook.id, SourceBook.file_path).filter(SourceBook.campaign_id == campaign_id).all()
                source_ids = [sid for sid, _ in sources]
                paths = [p for _, p in sources if p]
                chunk_count = _delete_sources(s, source_ids)

                doc_ids = [r[0] for r in s.query(Document.id).filter(Document.campaign_id == campaign_id).all()]
                history_count = 0
                if doc_ids:
                    history_count = (
                        s.query(DocumentHistory)
                        .filter(DocumentHistory.document_id.in_(doc_ids))
                        .delete(synchronize_session=False)
                    )
                    s.query(Document).filter(Document.id.in_(doc_ids)).delete(synchronize_session=False)
                s.delete(campaign)
                s.flush()
                removed = {
                    "sources": len(source_ids),
                    "chunks": chunk_count,
                    "documents": len(doc_ids),
                    "history": history_count,
                }
                s.add(AuditLog(
                    action="DELETE_CAMPAIGN",
                    details=(
                        f'Campaign "{name}" (ID: {campaign_id}) was deleted: '
                        f'{removed["documents"]} documents, {removed["history"]} history entries, '
                        f'{removed["sources"]} sources, {removed["chunks"]} chunks.'
                    ),
                ))
        except Exception as e:
            logger.exception("lifecycle: deletion of campaign %s rolled back", campaign_id)
            raise CascadeDeleteError(f"Failed to complete campaign deletion safely: {e}") from e

    files = _cleanup_files(paths)
    logger.info("lifecycle: campaign %s deleted %s files_removed=%d", campaign_id, removed, files)
    return {
        "success": True,
        "deleted": True,
        "message": f'Campaign "{name}" has been permanently removed.',
        "removed": removed,
    }


def delete_source(source_id: int) -> dict:
    with db_session() as s:
        source = s.query(SourceBook).filter(SourceBook.id == source_id).first()
        if source is None:
            raise NotFoundError(f"Source {source_id} not found")
        campaign_id = source.campaign_id
    with locks.campaign_lock(campaign_id):
        try:
            with db_session() as s:
                source = s.query(SourceBook).filter(SourceBook.id == source_id).with_for_update().first()
                if source is None:
                    raise NotFoundError(f"Source {source_id} not found")
                name, path = source.name, source.file_path
                chunks = _delete_sources(s, [source_id])
                s.add(AuditLog(
                    action="DELETE_SOURCE",
                    details=f'Source "{name}" (ID: {source_id}) removed from campaign {campaign_id} with {chunks} chunks.',
                ))
        except NotFoundError:
            raise
        except Exception as e:
            logger.exception("lifecycle: deletion of source %s rolled back", source_id)
            raise CascadeDeleteError(f"Failed to delete source safely: {e}") from e
    _cleanup_files([path] if path else [])
    logger.info("lifecycle: source %s deleted (chunks=%d)", source_id, chunks)
    return {"success": True, "campaign_id": campaign_id, "chunks": chunks}


def delete_global_source(global_id: int) -> dict:
    """Delete a library source and every campaign copy that shares its handle."""
    try:
        with db_session() as s:
            gs = s.query(GlobalSource).filter(GlobalSource.id == global_id).with_for_update().first()
            if gs is None:
                raise NotFoundError(f"Global source {global_id} not found")
            name, path, uri = gs.name, gs.file_path, gs.file_uri
            copies = s.query(SourceBook.id, SourceBook.campaign_id, SourceBook.file_path).filter(SourceBook.file_uri == uri).all()
            copy_ids = [c[0] for c in copies]
            campaign_ids = sorted({c[1] for c in copies})
            chunks = _delete_sources(s, copy_ids)
            s.delete(gs)
            s.flush()
            s.add(AuditLog(
                action="DELETE_GLOBAL_SOURCE",
                details=f'Global source "{name}" (ID: {global_id}) deleted with {len(copy_ids)} campaign copies and {chunks} chunks.',
            ))
    except NotFoundError:
        raise
    except Exception as e:
        logger.exception("lifecycle: deletion of global source %s rolled back", global_id)
        raise CascadeDeleteError(f"Failed to delete global source safely: {e}") from e
    _cleanup_files([path] + [c[2] for c in copies])
    logger.info("lifecycle: global source %s deleted (copies=%d chunks=%d)", global_id, len(copy_ids), chunks)
    return {"success": True, "copies": len(copy_ids), "campaign_ids": campaign_ids, "chunks": chunks}
