from typing import Tuple
import logging

from lorekeeper.errors import UnsupportedFileError

logger = logging.getLogger(__name__)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _pdf_text(path: str) -> str:
    import fitz  # PyMuPDF
    parts = []
    with fitz.open(path) as doc:
        for page in doc:
            parts.append(page.get_text("text") or "")
    return "\n".join(parts)


def _docx_text(path: str) -> str:
    from docx import Document as DocxDocument
    doc = DocxDocument(path)
    parts = [p.text for p in doc.paragraphs if p.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            cells = [c.text.strip() for c in row.cells]
            if any(cells):
                parts.append(" | ".join(cells))
    return "\n\n".join(parts)


def _read_utf8(path: str) -> str:
    with open(path, "r", encoding="utf-8", errors="replace") as fh:
        return fh.read()


# Returns (text, mime type to hand to the model provider).
# DOCX is flattened to text and re-labelled as markdown; JSON is sent as plain text.
def extract_text(path: str, filename: str, content_type: str) -> Tuple[str, str]:
    name = (filename or "").lower()
    ctype = (content_type or "").lower()
    if ctype in ("application/pdf", "application/x-pdf") or name.endswith(".pdf"):
        return _pdf_text(path), "application/pdf"
    if ctype == DOCX_MIME or name.endswith(".docx"):
        return _docx_text(path), "text/markdown"
    if ctype in ("text/markdown", "text/x-markdown") or name.endswith(".md"):
        return _read_utf8(path), "text/markdown"
    if ctype in ("text/plain", "application/json") or name.endswith((".txt", ".json")):
        return _read_utf8(path), "text/plain"
    logger.info("extract: unsupported upload %s (%s)", filename, content_type)
    raise UnsupportedFileError(f"Unsupported file type: {content_type or filename}")
