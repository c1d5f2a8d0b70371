import os

import pytest

from lorekeeper.db import persistence
from lorekeeper.db.base import db_session
from lorekeeper.db.models import AuditLog, Campaign, Document, DocumentHistory, SourceBook, SourceChunk
from lorekeeper.errors import CascadeDeleteError, NotFoundError
from lorekeeper.services import lifecycle, versions

from conftest import add_chunks, make_source


def _counts(campaign_id):
    with db_session() as s:
        doc_ids = [r[0] for r in s.query(Document.id).filter(Document.campaign_id == campaign_id).all()]
        src_ids = [r[0] for r in s.query(SourceBook.id).filter(SourceBook.campaign_id == campaign_id).all()]
        return {
            "campaign": s.query(Campaign).filter(Campaign.id == campaign_id).count(),
            "documents": len(doc_ids),
            "history": s.query(DocumentHistory).filter(DocumentHistory.document_id.in_(doc_ids)).count() if doc_ids else 0,
            "sources": len(src_ids),
            "chunks": s.query(SourceChunk).filter(SourceChunk.source_id.in_(src_ids)).count() if src_ids else 0,
        }


def _audit_actions():
    with db_session() as s:
        return [r[0] for r in s.query(AuditLog.action).order_by(AuditLog.id.asc()).all()]


def _seed(name="Doomed"):
    cid = persistence.create_campaign(name)["id"]
    for i in range(2):
        sid = make_source(cid, name=f"Book {i}", text="lore")["id"]
        add_chunks(sid, [("one", [1.0, 0.0]), ("two", [0.0, 1.0]), ("three", [1.0, 1.0])])
    for i in range(5):
        doc_id = persistence.create_document(cid, f"Doc {i}", "v0")["id"]
        versions.save_document(doc_id, "v1")
        versions.save_document(doc_id, "v2")
    return cid


def test_campaign_delete_cascades_and_leaves_others_alone(db):
    doomed = _seed("Doomed")
    survivor = _seed("Survivor")
    before = _counts(survivor)

    out = lifecycle.delete_campaign(doomed)
    assert out["success"] is True
    assert out["deleted"] is True
    assert out["removed"] == {"sources": 2, "chunks": 6, "documents": 5, "history": 10}

    assert _counts(doomed) == {"campaign": 0, "documents": 0, "history": 0, "sources": 0, "chunks": 0}
    assert _counts(survivor) == before
    assert _audit_actions() == ["DELETE_CAMPAIGN"]


def test_campaign_delete_is_idempotent(db):
    cid = _seed()
    assert lifecycle.delete_campaign(cid)["deleted"] is True
    again = lifecycle.delete_campaign(cid)
    assert again == {
        "success": True,
        "deleted": False,
        "message": "Campaign already deleted or does not exist.",
    }
    assert lifecycle.delete_campaign(987654)["deleted"] is False
    assert _audit_actions() == ["DELETE_CAMPAIGN"]


def test_failed_delete_rolls_back_everything(db, monkeypatch):
    cid = _seed()
    before = _counts(cid)

    def broken_audit(**kwargs):
        raise RuntimeError("audit table unavailable")

    monkeypatch.setattr(lifecycle, "AuditLog", broken_audit)
    with pytest.raises(CascadeDeleteError):
        lifecycle.delete_campaign(cid)

    assert _counts(cid) == before
    assert _audit_actions() == []


def test_backing_files_removed_only_when_orphaned(db, tmp_path):
    own = tmp_path / "own.pdf"
    shared = tmp_path / "shared.pdf"
    own.write_bytes(b"%PDF")
    shared.write_bytes(b"%PDF")

    a = persistence.create_campaign("A")["id"]
    b = persistence.create_campaign("B")["id"]
    make_source(a, name="Own", path=str(own), uri="file:///own")
    make_source(a, name="Shared", path=str(shared), uri="file:///shared")
    make_source(b, name="Shared", path=str(shared), uri="file:///shared")

    lifecycle.delete_campaign(a)
    assert not own.exists()
    assert shared.exists()

    lifecycle.delete_campaign(b)
    assert not shared.exists()


def test_missing_backing_file_does_not_fail_delete(db, tmp_path):
    cid = persistence.create_campaign("Ghost files")["id"]
    make_source(cid, path=str(tmp_path / "never-written.pdf"))
    assert lifecycle.delete_campaign(cid)["deleted"] is True


def test_delete_source_removes_its_chunks(db):
    cid = persistence.create_campaign("Sources")["id"]
    keep = make_source(cid, name="Keep")["id"]
    drop = make_source(cid, name="Drop")["id"]
    add_chunks(keep, [("k", [1.0])])
    add_chunks(drop, [("d1", [1.0]), ("d2", [1.0])])

    out = lifecycle.delete_source(drop)
    assert out == {"success": True, "campaign_id": cid, "chunks": 2}
    assert [s["id"] for s in persistence.list_sources(cid)] == [keep]
    assert _counts(cid)["chunks"] == 1
    assert _audit_actions() == ["DELETE_SOURCE"]
    with pytest.raises(NotFoundError):
        lifecycle.delete_source(drop)


def test_global_source_delete_removes_campaign_copies(db, tmp_path):
    lib_file = tmp_path / "bestiary.pdf"
    lib_file.write_bytes(b"%PDF")
    g = persistence.create_global_source(
        name="Bestiary", file_path=str(lib_file), text="owlbears", file_uri="file:///bestiary", mime_type="application/pdf"
    )
    a = persistence.create_campaign("A")["id"]
    b = persistence.create_campaign("B")["id"]
    copy_a = persistence.assign_global_source(a, g["id"])["id"]
    persistence.assign_global_source(b, g["id"])
    add_chunks(copy_a, [("owlbear", [1.0, 0.0])])
    unrelated = make_source(a, name="Gazetteer")["id"]

    # deleting a campaign copy keeps the shared library file
    lifecycle.delete_source(copy_a)
    assert lib_file.exists()

    out = lifecycle.delete_global_source(g["id"])
    assert out["copies"] == 1
    assert out["campaign_ids"] == [b]
    assert persistence.list_global_sources() == []
    assert [s["id"] for s in persistence.list_sources(a)] == [unrelated]
    assert persistence.list_sources(b) == []
    assert not os.path.exists(lib_file)
    with pytest.raises(NotFoundError):
        lifecycle.delete_global_source(g["id"])
