import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import numpy as np

from lorekeeper.db.base import db_session
from lorekeeper.db.models import SourceBook, SourceChunk
from lorekeeper.services.embedder import embed_text

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Awaitable[Optional[np.ndarray]]]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|); -inf when either vector has no magnitude."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        return float("-inf")
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0 or not np.isfinite(na) or not np.isfinite(nb):
        return float("-inf")
    return float(np.dot(va, vb) / (na * nb))


class Index:
    """Cosine index over (text, vector) pairs kept in insertion order."""

    def __init__(self, texts: List[str], embeddings: List[Sequence[float]]):
        self.texts = texts
        self.embeddings = [np.asarray(e, dtype=np.float64) for e in embeddings]

    def search(self, query_vec: Sequence[float], top_k: int = 5) -> List[Tuple[str, float]]:
        q = np.asarray(query_vec, dtype=np.float64).reshape(-1)
        if top_k <= 0 or not self.texts:
            return []
        sims = np.array([cosine_similarity(e, q) for e in self.embeddings], dtype=np.float64)
        sims[~np.isfinite(sims)] = -np.inf
        # stable: equal scores keep insertion order
        order = np.argsort(-sims, kind="stable")
        out: List[Tuple[str, float]] = []
        for i in order:
            if sims[i] == -np.inf:
                break
            out.append((self.texts[i], float(sims[i])))
            if len(out) >= top_k:
                break
        return out


def load_campaign_index(campaign_id: int) -> Index:
    with db_session() as s:
        rows = (
            s.query(SourceChunk.text, SourceChunk.embedding)
            .join(SourceBook, SourceBook.id == SourceChunk.source_id)
            .filter(SourceBook.campaign_id == campaign_id)
            .order_by(SourceChunk.id.asc())
            .all()
        )
        texts: List[str] = []
        embs: List[Sequence[float]] = []
        for text, emb in rows:
            if emb is None:
                continue
            texts.append(text)
            # pgvector returns numpy arrays, JSON returns lists
            embs.append(list(emb) if isinstance(emb, (list, tuple)) else np.asarray(emb).tolist())
    return Index(texts, embs)


def retrieve(campaign_id: int, query_vector: Sequence[float], k: int = 5) -> List[str]:
    """Top-k chunk texts of the campaign's sources, most similar first."""
    index = load_campaign_index(campaign_id)
    hits = index.search(query_vector, top_k=k)
    logger.debug("retrieve: campaign=%s candidates=%d top_sims=%s",
                 campaign_id, len(index.texts), [round(s, 3) for _, s in hits])
    return [t for t, _ in hits]


async def retrieve_context(campaign_id: int, query: str, k: int = 5, *, embed: Optional[EmbedFn] = None) -> List[str]:
    embed = embed or embed_text
    qvec = await embed(query)
    if qvec is None:
        logger.info("retrieve: query embedding unavailable for campaign=%s; no context", campaign_id)
        return []
    return await asyncio.to_thread(retrieve, campaign_id, qvec, k)
