# Ensure `import lorekeeper` works whether tests are run from the repo root or tests/
import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from lorekeeper.db import base as db_base
from lorekeeper.db.base import db_session
from lorekeeper.db.models import SourceChunk
from lorekeeper.db import persistence
from lorekeeper.services.context_cache import reset_cache_manager
from lorekeeper.services.embedding_store import reset_ingestion_queue


@pytest.fixture(autouse=True)
def offline_env(monkeypatch, tmp_path):
    # No provider keys: embeddings use the deterministic fallback, chat uses the offline answer
    for key in ("OPENAI_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY", "DATABASE_URL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("EMBED_DELAY_SECONDS", "0")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("EMBED_BACKFILL_ON_STARTUP", "false")
    yield


@pytest.fixture
def db(tmp_path):
    db_base.dispose_db()
    db_base.init_db(f"sqlite:///{tmp_path / 'lore.db'}")
    yield
    db_base.dispose_db()


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient
    from lorekeeper.main import app

    reset_ingestion_queue()
    reset_cache_manager()
    with TestClient(app) as c:
        yield c
    reset_ingestion_queue()
    reset_cache_manager()


def make_source(campaign_id, name="Monster Manual", text="", uri=None, path=None, mime="text/plain"):
    return persistence.create_source(
        campaign_id,
        name=name,
        file_path=path,
        text=text,
        file_uri=uri or f"file:///sources/{name.replace(' ', '_')}-{campaign_id}",
        mime_type=mime,
    )


def add_chunks(source_id, items):
    """items: list of (text, vector) stored in order."""
    with db_session() as s:
        for i, (text, vec) in enumerate(items):
            s.add(SourceChunk(source_id=source_id, chunk_index=i, text=text, embedding=list(vec)))
