import pytest

from lorekeeper.errors import UnsupportedFileError
from lorekeeper.services.text_extractor import DOCX_MIME, extract_text
from lorekeeper.services.uploads import prepare_upload


def test_plain_and_markdown(tmp_path):
    txt = tmp_path / "notes.txt"
    txt.write_text("Kobolds love salt.", encoding="utf-8")
    assert extract_text(str(txt), "notes.txt", "") == ("Kobolds love salt.", "text/plain")

    md = tmp_path / "atlas.md"
    md.write_text("# Atlas", encoding="utf-8")
    assert extract_text(str(md), "atlas.md", "text/markdown") == ("# Atlas", "text/markdown")


def test_json_is_sent_as_plain_text(tmp_path):
    p = tmp_path / "npcs.json"
    p.write_text('{"name": "Vael"}', encoding="utf-8")
    assert extract_text(str(p), "npcs.json", "application/json")[1] == "text/plain"


def test_docx_is_flattened_to_markdown(tmp_path):
    from docx import Document

    doc = Document()
    doc.add_paragraph("The Salt Queen")
    doc.add_paragraph("   ")
    table = doc.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "HP"
    table.rows[0].cells[1].text = "120"
    path = tmp_path / "queen.docx"
    doc.save(str(path))

    text, mime = extract_text(str(path), "queen.docx", DOCX_MIME)
    assert mime == "text/markdown"
    assert text == "The Salt Queen\n\nHP | 120"


def test_pdf_text(tmp_path):
    import fitz

    path = tmp_path / "lair.pdf"
    with fitz.open() as doc:
        page = doc.new_page()
        page.insert_text((72, 72), "Lich lair beneath the flats")
        doc.save(str(path))

    text, mime = extract_text(str(path), "lair.pdf", "application/pdf")
    assert mime == "application/pdf"
    assert "Lich lair beneath the flats" in text


def test_unknown_type_is_rejected(tmp_path):
    p = tmp_path / "map.png"
    p.write_bytes(b"\x89PNG")
    with pytest.raises(UnsupportedFileError):
        extract_text(str(p), "map.png", "image/png")


def test_prepare_upload_cleans_up_on_rejection(tmp_path, monkeypatch):
    updir = tmp_path / "up"
    monkeypatch.setenv("UPLOAD_DIR", str(updir))
    with pytest.raises(UnsupportedFileError):
        prepare_upload(b"\x00\x01", "blob.bin", "application/octet-stream")
    assert list(updir.iterdir()) == []

    prepared = prepare_upload(b"Owlbears.", "owl.txt", "text/plain")
    assert prepared.text == "Owlbears."
    assert prepared.mime_type == "text/plain"
    assert prepared.uri.startswith("file://")
    assert [p.name for p in updir.iterdir()] == [prepared.path.rsplit("/", 1)[-1]]
