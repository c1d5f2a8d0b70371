import os
import re
import asyncio
import hashlib
import logging
from typing import Optional
import numpy as np
from lorekeeper.services.metrics import now, elapsed_ms, record_llm, record_fallback

logger = logging.getLogger(__name__)

EMBED_MODEL = os.getenv("EMBED_MODEL", "text-embedding-3-small")
FALLBACK_DIM = 256

_TOKEN_RE = re.compile(r"[a-z0-9']+")

# Fallback deterministic embedding when OPENAI_API_KEY is not set:
# hashed bag-of-words, so overlapping vocabulary still ranks higher offline.

def _fallback_embed(text: str) -> np.ndarray:
    v = np.zeros(FALLBACK_DIM, dtype=np.float32)
    for tok in _TOKEN_RE.findall(text.lower()):
        h = int(hashlib.sha256(tok.encode("utf-8")).hexdigest()[:8], 16)
        v[h % FALLBACK_DIM] += 1.0
    norm = np.linalg.norm(v)
    # All-zero stays zero; the retriever treats it as unrankable
    return v / norm if norm > 0 else v


def _openai_client():
    from openai import OpenAI  # lazy import
    return OpenAI()


def _embed_openai(text: str) -> np.ndarray:
    client = _openai_client()
    resp = client.embeddings.create(model=EMBED_MODEL, input=[text])
    return np.array(resp.data[0].embedding, dtype=np.float32)


async def embed_text(text: str) -> Optional[np.ndarray]:
    """Embed one text. Returns None on provider failure; callers skip it.

    No retry loop here: a failed chunk is picked up by the next backfill pass.
    """
    if not text or not text.strip():
        return None
    if not os.getenv("OPENAI_API_KEY"):
        record_fallback("embed_offline")
        return _fallback_embed(text)
    t0 = now()
    try:
        out = await asyncio.to_thread(_embed_openai, text)
        record_llm("openai", EMBED_MODEL, latency_ms=elapsed_ms(t0), ok=True)
        return out
    except Exception as e:
        record_llm("openai", EMBED_MODEL, latency_ms=elapsed_ms(t0), ok=False)
        logger.warning("embed: provider call failed (%d chars): %s", len(text), e)
        return None
