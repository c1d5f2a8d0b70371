from fastapi import APIRouter, Query
from typing import Optional

from lorekeeper.db.base import db_session
from lorekeeper.db import base as db_base
from lorekeeper.services.context_cache import get_cache_manager

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/db")
def health_db(campaign_id: Optional[int] = Query(default=None, description="Optional campaign_id to verify existence")):
    engine = getattr(db_base, "engine", None)
    if getattr(db_base, "SessionLocal", None) is None:
        return {"db": "disabled", "engine_initialized": engine is not None}
    try:
        # Import models lazily to avoid circular imports at module import time
        from lorekeeper.db.models import Campaign, Document, DocumentHistory, SourceBook, SourceChunk  # type: ignore
        with db_session() as s:
            counts = {
                "campaigns": s.query(Campaign).count(),
                "documents": s.query(Document).count(),
                "document_history": s.query(DocumentHistory).count(),
                "sources": s.query(SourceBook).count(),
                "chunks": s.query(SourceChunk).count(),
            }
            exists = None
            if campaign_id is not None:
                exists = s.query(Campaign).filter(Campaign.id == campaign_id).first() is not None
        resp = {
            "db": "ok",
            "dialect": engine.dialect.name if engine is not None else None,
            "counts": counts,
            "context_caches": len(get_cache_manager().store.entries()),
        }
        if campaign_id is not None:
            resp.update({"campaign_id": campaign_id, "campaign_exists": exists})
        return resp
    except Exception as e:
        return {"db": "error", "error": str(e)}
