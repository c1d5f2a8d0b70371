import os
import re
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from lorekeeper.config import llm_provider, retrieval_top_k
from lorekeeper.db.base import db_session
from lorekeeper.db.models import Campaign
from lorekeeper.db.persistence import get_document, source_handles
from lorekeeper.errors import GenerationError, NotFoundError
from lorekeeper.services.context_cache import ContextCacheManager, SourceHandle, get_cache_manager
from lorekeeper.services.metrics import now, elapsed_ms, record_llm
from lorekeeper.services.prompts import CANONIZE_PROMPT, SYSTEM_PROMPT
from lorekeeper.services.retriever import EmbedFn, retrieve_context

logger = logging.getLogger(__name__)

CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o-mini")

_FENCE_RE = re.compile(r"^```(?:markdown|md)?\s*\n|\n?```\s*$")


@dataclass
class PromptParts:
    message: str
    excerpts: List[str] = field(default_factory=list)
    document: Optional[str] = None
    system: Optional[str] = SYSTEM_PROMPT
    sources: List[SourceHandle] = field(default_factory=list)
    cached_content: Optional[str] = None


GenerateFn = Callable[[PromptParts], Awaitable[str]]


def build_prompt(parts: PromptParts) -> str:
    """User-turn text: retrieved excerpts, the live document, then the message."""
    sections = []
    if parts.excerpts:
        ctx = "\n\n".join(f"[excerpt {i}]\n{t}" for i, t in enumerate(parts.excerpts, 1))
        sections.append(f"--- RELEVANT SOURCE EXCERPTS ---\n{ctx}")
    if parts.document:
        sections.append(f"--- CURRENT DOCUMENT ---\n{parts.document}")
    sections.append(f"--- REQUEST ---\n{parts.message}")
    return "\n\n".join(sections)


def provider_ready() -> bool:
    if llm_provider() == "gemini":
        from lorekeeper.services.providers.gemini import is_configured
        return is_configured()
    return bool(os.getenv("OPENAI_API_KEY"))


def _client():
    from openai import OpenAI
    return OpenAI()


def _chat_openai(parts: PromptParts) -> str:
    client = _client()
    msgs = []
    if parts.system:
        msgs.append({"role": "system", "content": parts.system})
    msgs.append({"role": "user", "content": build_prompt(parts)})
    t0 = now()
    try:
        resp = client.chat.completions.create(model=CHAT_MODEL, messages=msgs, temperature=0.7)
    except Exception:
        record_llm("openai", CHAT_MODEL, latency_ms=elapsed_ms(t0), ok=False)
        raise
    record_llm("openai", CHAT_MODEL, latency_ms=elapsed_ms(t0), ok=True)
    return resp.choices[0].message.content or ""


def _chat_gemini(parts: PromptParts) -> str:
    from lorekeeper.services.providers import gemini
    return gemini.generate(
        build_prompt(parts),
        sources=parts.sources,
        cached_content=parts.cached_content,
        system_instruction=parts.system,
    )


async def generate(parts: PromptParts) -> str:
    fn = _chat_gemini if llm_provider() == "gemini" else _chat_openai
    try:
        return await asyncio.to_thread(fn, parts)
    except Exception as e:
        logger.warning("assistant: generation failed: %s", e)
        raise GenerationError("AI processing failed") from e


def _fallback_answer(parts: PromptParts) -> str:
    # No model configured: surface what retrieval found so the UI still works
    if not parts.excerpts:
        return "No model is configured and no relevant source excerpts were found."
    best = parts.excerpts[0]
    snippet = (best[:400] + "...") if len(best) > 400 else best
    return f"No model is configured. Most relevant excerpt:\n\n> {snippet}"


def _campaign_exists(campaign_id: int) -> bool:
    with db_session() as s:
        return s.query(Campaign.id).filter(Campaign.id == campaign_id).first() is not None


async def chat_turn(
    campaign_id: int,
    message: str,
    *,
    document_id: Optional[int] = None,
    document_content: Optional[str] = None,
    k: Optional[int] = None,
    cache_manager: Optional[ContextCacheManager] = None,
    embed: Optional[EmbedFn] = None,
    generate_fn: Optional[GenerateFn] = None,
) -> dict:
    if not await asyncio.to_thread(_campaign_exists, campaign_id):
        raise NotFoundError("Campaign not found")
    if document_content is None and document_id is not None:
        document_content = (await asyncio.to_thread(get_document, document_id)).get("content")

    excerpts = await retrieve_context(campaign_id, message, k or retrieval_top_k(), embed=embed)
    handles = await asyncio.to_thread(source_handles, campaign_id)
    manager = cache_manager or get_cache_manager()
    cached = await manager.get_or_create(campaign_id, handles) if manager.enabled else None

    parts = PromptParts(
        message=message,
        excerpts=excerpts,
        document=document_content,
        sources=[] if cached else handles,
        cached_content=cached,
    )
    logger.info("assistant: campaign=%s excerpts=%d cached=%s inline_sources=%d",
                campaign_id, len(excerpts), bool(cached), len(parts.sources))
    if generate_fn is None and not provider_ready():
        text = _fallback_answer(parts)
    else:
        text = await (generate_fn or generate)(parts)
    return {"response": text, "excerpts": excerpts, "cached": bool(cached)}


def strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip())


async def canonize(selection: str, full_response: str, document_content: str, *,
                   generate_fn: Optional[GenerateFn] = None) -> str:
    """Merge a selected fragment of an assistant reply into the document text.

    Returns the updated content; saving it is the caller's decision.
    """
    if generate_fn is None and not provider_ready():
        base = (document_content or "").rstrip()
        return f"{base}\n\n{selection.strip()}\n" if base else f"{selection.strip()}\n"
    prompt = CANONIZE_PROMPT.format(document=document_content or "", selection=selection, full_response=full_response or "")
    raw = await (generate_fn or generate)(PromptParts(message=prompt, system=None))
    return strip_fences(raw)
