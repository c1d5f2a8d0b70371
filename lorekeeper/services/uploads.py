import logging
from dataclasses import dataclass

from lorekeeper.config import llm_provider
from lorekeeper.services import file_store
from lorekeeper.services.text_extractor import extract_text

logger = logging.getLogger(__name__)


@dataclass
class PreparedUpload:
    path: str
    text: str
    uri: str
    mime_type: str


def _provider_uri(path: str, mime_type: str, filename: str) -> str:
    if llm_provider() == "gemini":
        from lorekeeper.services.providers import gemini
        if gemini.is_configured():
            try:
                return gemini.upload_file(path, mime_type, filename)
            except Exception as e:
                logger.warning("uploads: provider upload failed for %s, using local handle: %s", filename, e)
    return file_store.local_uri(path)


def prepare_upload(data: bytes, filename: str, content_type: str) -> PreparedUpload:
    """Store the raw bytes, extract text and obtain the provider handle.

    The stored file is removed again if extraction fails.
    """
    path = file_store.save_upload(data, filename)
    try:
        text, mime_type = extract_text(path, filename, content_type)
    except Exception:
        file_store.remove_file(path)
        raise
    uri = _provider_uri(path, mime_type, filename)
    logger.info("uploads: %s stored (%d chars, %s)", filename, len(text), mime_type)
    return PreparedUpload(path=path, text=text, uri=uri, mime_type=mime_type)
