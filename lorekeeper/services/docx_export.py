import io
import re

from docx import Document as DocxDocument
from docx.oxml import OxmlElement
from docx.oxml.ns import qn

_HEADING_RE = re.compile(r"^(#{1,3}) (.*)$")
_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9 ._-]+")


def _thematic_break(doc) -> None:
    # python-docx has no horizontal rule; draw a bottom border on an empty paragraph
    p = doc.add_paragraph()
    border = OxmlElement("w:pBdr")
    bottom = OxmlElement("w:bottom")
    bottom.set(qn("w:val"), "single")
    bottom.set(qn("w:sz"), "6")
    bottom.set(qn("w:space"), "1")
    bottom.set(qn("w:color"), "auto")
    border.append(bottom)
    p._p.get_or_add_pPr().append(border)


def markdown_to_docx(markdown: str) -> bytes:
    """Line-oriented Markdown to DOCX.

    Handles `#`..`###` headings, `---` rules and whole-line `**bold**` /
    `*italic*`; anything else becomes a plain paragraph.
    """
    doc = DocxDocument()
    for line in (markdown or "").split("\n"):
        m = _HEADING_RE.match(line)
        if m:
            doc.add_heading(m.group(2), level=len(m.group(1)))
        elif line.startswith("---"):
            _thematic_break(doc)
        elif len(line) >= 4 and line.startswith("**") and line.endswith("**"):
            doc.add_paragraph().add_run(line[2:-2]).bold = True
        elif len(line) >= 2 and line.startswith("*") and line.endswith("*"):
            doc.add_paragraph().add_run(line[1:-1]).italic = True
        else:
            doc.add_paragraph(line)
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


def export_filename(name: str) -> str:
    base = _UNSAFE_NAME_RE.sub("_", (name or "").strip()) or "export"
    return f"{base}.docx"
