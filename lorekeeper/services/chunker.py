from typing import List, Optional

from lorekeeper.config import chunk_overlap, chunk_size

# Fixed character windows: `size` chars each, advancing by `size - overlap`.
# The trailing partial window is kept as-is (no padding).


def chunk_text(text: str, size: Optional[int] = None, overlap: Optional[int] = None) -> List[str]:
    size = chunk_size() if size is None else size
    overlap = chunk_overlap() if overlap is None else overlap
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    if overlap < 0 or overlap >= size:
        raise ValueError(f"overlap must satisfy 0 <= overlap < size, got overlap={overlap} size={size}")
    if not text:
        return []
    step = size - overlap
    chunks: List[str] = []
    start = 0
    n = len(text)
    while start < n:
        end = min(n, start + size)
        chunks.append(text[start:end])
        if end == n:
            break
        start += step
    return chunks


def reassemble(chunks: List[str], overlap: int) -> str:
    """Inverse of chunk_text: drop the overlapping prefix of every window after the first."""
    if not chunks:
        return ""
    parts = [chunks[0]]
    for c in chunks[1:]:
        parts.append(c[overlap:])
    return "".join(parts)
