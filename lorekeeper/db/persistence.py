from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func

from lorekeeper.db.base import db_session
from lorekeeper.db.models import AuditLog, Campaign, Document, GlobalSource, SourceBook
from lorekeeper.errors import ConflictError, NotFoundError
from lorekeeper.services import locks
from lorekeeper.services.context_cache import SourceHandle


def _campaign_dict(c: Campaign, source_count: int = 0) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "setting": c.setting,
        "remote_brain_id": c.remote_brain_id,
        "remote_session_id": c.remote_session_id,
        "created_at": c.created_at,
        "source_count": int(source_count or 0),
    }


def _document_dict(d: Document) -> dict:
    return {
        "id": d.id,
        "campaign_id": d.campaign_id,
        "title": d.title,
        "content": d.content,
        "version": d.version,
        "created_at": d.created_at,
    }


def _source_dict(src: SourceBook) -> dict:
    return {
        "id": src.id,
        "campaign_id": src.campaign_id,
        "name": src.name,
        "file_uri": src.file_uri,
        "mime_type": src.mime_type,
        "created_at": src.created_at,
    }


# Campaigns

def list_campaigns() -> List[dict]:
    with db_session() as s:
        rows = (
            s.query(Campaign, func.count(SourceBook.id))
            .outerjoin(SourceBook, SourceBook.campaign_id == Campaign.id)
            .group_by(Campaign.id)
            .order_by(Campaign.id.asc())
            .all()
        )
        return [_campaign_dict(c, n) for c, n in rows]


def create_campaign(name: str, setting: Optional[str] = None) -> dict:
    with db_session() as s:
        c = Campaign(name=name, setting=setting)
        s.add(c)
        s.flush()
        return _campaign_dict(c)


def rename_campaign(campaign_id: int, name: str, setting: Optional[str] = None) -> dict:
    with db_session() as s:
        c = s.query(Campaign).filter(Campaign.id == campaign_id).first()
        if c is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        c.name = name
        c.setting = setting
        s.flush()
        return _campaign_dict(c)


def _require_campaign(s, campaign_id: int) -> Campaign:
    c = s.query(Campaign).filter(Campaign.id == campaign_id).first()
    if c is None:
        raise NotFoundError(f"Campaign {campaign_id} not found")
    return c


def get_campaign(campaign_id: int) -> dict:
    with db_session() as s:
        return _campaign_dict(_require_campaign(s, campaign_id))


# Documents

def list_documents(campaign_id: int) -> List[dict]:
    with db_session() as s:
        _require_campaign(s, campaign_id)
        rows = s.query(Document).filter(Document.campaign_id == campaign_id).order_by(Document.id.asc()).all()
        return [_document_dict(d) for d in rows]


def create_document(campaign_id: int, title: str, content: str = "") -> dict:
    with locks.campaign_lock(campaign_id):
        with db_session() as s:
            _require_campaign(s, campaign_id)
            d = Document(campaign_id=campaign_id, title=title, content=content, version=1)
            s.add(d)
            s.flush()
            return _document_dict(d)


def get_document(document_id: int) -> dict:
    with db_session() as s:
        d = s.query(Document).filter(Document.id == document_id).first()
        if d is None:
            raise NotFoundError(f"Document {document_id} not found")
        return _document_dict(d)


def rename_document(document_id: int, title: str) -> dict:
    with locks.document_lock(document_id):
        with db_session() as s:
            d = s.query(Document).filter(Document.id == document_id).first()
            if d is None:
                raise NotFoundError(f"Document {document_id} not found")
            d.title = title
            s.flush()
            return _document_dict(d)


# Sources

def list_sources(campaign_id: int) -> List[dict]:
    with db_session() as s:
        _require_campaign(s, campaign_id)
        rows = s.query(SourceBook).filter(SourceBook.campaign_id == campaign_id).order_by(SourceBook.id.asc()).all()
        return [_source_dict(r) for r in rows]


def source_handles(campaign_id: int) -> List[SourceHandle]:
    with db_session() as s:
        rows = (
            s.query(SourceBook.file_uri, SourceBook.mime_type)
            .filter(SourceBook.campaign_id == campaign_id)
            .order_by(SourceBook.id.asc())
            .all()
        )
        return [SourceHandle(uri=u, mime_type=m or "application/pdf") for u, m in rows if u]


def create_source(campaign_id: int, *, name: str, file_path: Optional[str], text: str, file_uri: str, mime_type: str) -> dict:
    with locks.campaign_lock(campaign_id):
        with db_session() as s:
            _require_campaign(s, campaign_id)
            src = SourceBook(
                campaign_id=campaign_id,
                name=name,
                file_path=file_path,
                text_content=text,
                file_uri=file_uri,
                mime_type=mime_type,
            )
            s.add(src)
            s.flush()
            return _source_dict(src)


def list_global_sources() -> List[dict]:
    with db_session() as s:
        rows = s.query(GlobalSource).order_by(GlobalSource.created_at.desc(), GlobalSource.id.desc()).all()
        return [
            {"id": g.id, "name": g.name, "mime_type": g.mime_type, "file_uri": g.file_uri, "created_at": g.created_at}
            for g in rows
        ]


def create_global_source(*, name: str, file_path: Optional[str], text: str, file_uri: str, mime_type: str) -> dict:
    with db_session() as s:
        g = GlobalSource(name=name, file_path=file_path, text_content=text, file_uri=file_uri, mime_type=mime_type)
        s.add(g)
        s.flush()
        return {"id": g.id, "name": g.name, "file_uri": g.file_uri, "mime_type": g.mime_type}


def assign_global_source(campaign_id: int, global_id: int) -> dict:
    """Copy a library source into a campaign. ConflictError if already assigned."""
    with locks.campaign_lock(campaign_id):
        with db_session() as s:
            g = s.query(GlobalSource).filter(GlobalSource.id == global_id).first()
            if g is None:
                raise NotFoundError(f"Global source {global_id} not found")
            _require_campaign(s, campaign_id)
            existing = (
                s.query(SourceBook.id)
                .filter(SourceBook.campaign_id == campaign_id, SourceBook.file_uri == g.file_uri)
                .first()
            )
            if existing is not None:
                raise ConflictError("Source already assigned to this campaign")
            src = SourceBook(
                campaign_id=campaign_id,
                name=g.name,
                file_path=g.file_path,
                text_content=g.text_content,
                file_uri=g.file_uri,
                mime_type=g.mime_type,
            )
            s.add(src)
            s.flush()
            return _source_dict(src)


# Audit

def list_audit(limit: int = 50) -> List[dict]:
    with db_session() as s:
        rows = s.query(AuditLog).order_by(AuditLog.id.desc()).limit(max(1, min(limit, 500))).all()
        return [{"id": r.id, "action": r.action, "details": r.details, "timestamp": r.timestamp} for r in rows]
