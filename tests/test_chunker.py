import pytest

from lorekeeper.services.chunker import chunk_text, reassemble


def test_empty_text_has_no_chunks():
    assert chunk_text("", 10, 2) == []


def test_windows_advance_by_size_minus_overlap():
    assert chunk_text("abcdefghij", 4, 1) == ["abcd", "defg", "ghij"]


def test_final_partial_window_is_kept():
    chunks = chunk_text("abcdefghijk", 4, 1)
    assert chunks == ["abcd", "defg", "ghij", "jk"]


def test_short_text_is_single_chunk():
    assert chunk_text("dragon", 1000, 100) == ["dragon"]


@pytest.mark.parametrize("size,overlap", [(1, 0), (5, 0), (5, 4), (7, 3), (10, 1), (1000, 100)])
def test_reassembly_covers_every_character(size, overlap):
    base = "The lich queen of Vael sleeps beneath the salt flats. "
    for n in range(0, 130, 7):
        text = (base * 3)[:n]
        assert reassemble(chunk_text(text, size, overlap), overlap) == text


def test_deterministic():
    text = "kobolds " * 300
    assert chunk_text(text, 100, 10) == chunk_text(text, 100, 10)


@pytest.mark.parametrize("size,overlap", [(10, 10), (10, 11), (0, 0), (10, -1)])
def test_invalid_parameters_fail_fast(size, overlap):
    with pytest.raises(ValueError):
        chunk_text("some text", size, overlap)


def test_defaults_come_from_environment(monkeypatch):
    monkeypatch.setenv("CHUNK_SIZE", "10")
    monkeypatch.setenv("CHUNK_OVERLAP", "2")
    chunks = chunk_text("x" * 25)
    assert [len(c) for c in chunks] == [10, 10, 9]
