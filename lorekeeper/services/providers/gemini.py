from __future__ import annotations

import os
import asyncio
import logging
from typing import List, Optional

from lorekeeper.errors import CacheUnavailableError
from lorekeeper.services.context_cache import RemoteCacheProvider, SourceHandle
from lorekeeper.services.metrics import now, elapsed_ms, record_llm
from lorekeeper.services.prompts import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite")

_client = None


def is_configured() -> bool:
    return bool(os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"))


def _get_client():
    global _client
    if _client is None:
        from google import genai  # lazy import
        key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        _client = genai.Client(api_key=key) if key else genai.Client()
    return _client


def _is_remote_uri(uri: str) -> bool:
    # Only Files API URIs can be attached; local file:// handles cannot
    return uri.startswith("https://") or uri.startswith("http://")


def _file_parts(sources: List[SourceHandle]) -> list:
    from google.genai import types
    return [
        types.Part.from_uri(file_uri=s.uri, mime_type=s.mime_type)
        for s in sources
        if _is_remote_uri(s.uri)
    ]


def upload_file(path: str, mime_type: str, display_name: str) -> str:
    """Upload a stored file to the Files API and return its URI."""
    from google.genai import types
    client = _get_client()
    f = client.files.upload(file=path, config=types.UploadFileConfig(mime_type=mime_type, display_name=display_name))
    logger.info("gemini: uploaded %s as %s", display_name, f.uri)
    return f.uri


class GeminiCacheProvider(RemoteCacheProvider):
    name = "gemini"

    def __init__(self, model: Optional[str] = None, system_instruction: str = SYSTEM_PROMPT):
        self.model = model or GEMINI_MODEL
        self.system_instruction = system_instruction

    def _create_sync(self, sources: List[SourceHandle], ttl_seconds: int) -> str:
        from google.genai import types
        parts = _file_parts(sources)
        if not parts:
            raise CacheUnavailableError("no provider-side files to cache")
        client = _get_client()
        cache = client.caches.create(
            model=self.model,
            config=types.CreateCachedContentConfig(
                contents=[types.Content(role="user", parts=parts)],
                system_instruction=self.system_instruction,
                ttl=f"{int(ttl_seconds)}s",
            ),
        )
        return cache.name

    async def create(self, sources: List[SourceHandle], ttl_seconds: int) -> str:
        t0 = now()
        try:
            handle = await asyncio.to_thread(self._create_sync, sources, ttl_seconds)
        except CacheUnavailableError:
            raise
        except Exception as e:
            record_llm("gemini", "cache.create", latency_ms=elapsed_ms(t0), ok=False)
            raise CacheUnavailableError(str(e)) from e
        record_llm("gemini", "cache.create", latency_ms=elapsed_ms(t0), ok=True)
        return handle

    async def delete(self, handle: str) -> None:
        client = _get_client()
        await asyncio.to_thread(client.caches.delete, name=handle)


def generate(prompt: str, *, sources: List[SourceHandle], cached_content: Optional[str] = None,
             system_instruction: Optional[str] = SYSTEM_PROMPT) -> str:
    from google.genai import types
    client = _get_client()
    if cached_content:
        # System instruction and files are already part of the cached context
        config = types.GenerateContentConfig(cached_content=cached_content)
        contents = [prompt]
    else:
        config = types.GenerateContentConfig(system_instruction=system_instruction) if system_instruction else None
        contents = _file_parts(sources) + [prompt]
    t0 = now()
    try:
        resp = client.models.generate_content(model=GEMINI_MODEL, contents=contents, config=config)
    except Exception:
        record_llm("gemini", GEMINI_MODEL, latency_ms=elapsed_ms(t0), ok=False)
        raise
    record_llm("gemini", GEMINI_MODEL, latency_ms=elapsed_ms(t0), ok=True)
    return resp.text or ""
