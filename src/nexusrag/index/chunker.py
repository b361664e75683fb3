from __future__ import annotations

from ..errors import ValidationError

# A joined window must be at least this long to be kept.
MIN_CHUNK_CHARS = 6


def validate_chunk_params(size: int, overlap: int) -> None:
    if size <= 0:
        raise ValidationError(f"Chunk size must be positive (got {size}).")
    if overlap < 0:
        raise ValidationError(f"Chunk overlap must not be negative (got {overlap}).")
    if overlap >= size:
        raise ValidationError(f"Chunk overlap ({overlap}) must be smaller than chunk size ({size}).")


def chunk_text(text: str, size: int, overlap: int) -> list[str]:
    """Split ``text`` into overlapping windows of ``size`` words.

    Windows start every ``size - overlap`` words. The scan stops right after
    the first window that reaches the last word, so no short duplicate tail
    is emitted. Windows shorter than ``MIN_CHUNK_CHARS`` characters are
    dropped. Same inputs always give the same windows.
    """
    validate_chunk_params(size, overlap)

    words = text.split()
    n = len(words)
    stride = size - overlap
    chunks: list[str] = []

    i = 0
    while i < n:
        chunk = " ".join(words[i : i + size])
        if len(chunk) >= MIN_CHUNK_CHARS:
            chunks.append(chunk)
        if i + size >= n:
            break
        i += stride
    return chunks
