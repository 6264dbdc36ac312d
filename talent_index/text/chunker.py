"""Boundary-aware text chunking.

Splits a projected text into bounded, overlapping windows so each unit fits
an embedding provider's input limit. Window ends snap back to a sentence
terminator, then a space, as long as the boundary lies past the window's
midpoint; otherwise the window is cut hard.

``chunk`` is a pure function: the same arguments always produce the same
chunks, and ``chunk.text == text[chunk.start_offset:chunk.end_offset]``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..common.errors import InvalidInputError

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200

SENTENCE_TERMINATORS = ".?!"


@dataclass(frozen=True)
class Chunk:
    """Offset-tracked slice of a larger text."""
    text: str
    start_offset: int
    end_offset: int
    metadata: Dict[str, Any] = field(default_factory=dict, compare=True, hash=False)


def _window_end(text: str, start: int, chunk_size: int) -> int:
    """Pick the end of the window starting at ``start``."""
    end = min(start + chunk_size, len(text))
    if end >= len(text):
        return end

    midpoint = start + chunk_size / 2
    window = text[start:end]

    sentence_end = max(window.rfind(t) for t in SENTENCE_TERMINATORS)
    if sentence_end != -1 and start + sentence_end > midpoint:
        return start + sentence_end + 1

    space = window.rfind(" ")
    if space != -1 and start + space > midpoint:
        return start + space

    return end


def chunk(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[Chunk]:
    """Split ``text`` into ordered, overlapping chunks.

    Parameters
    - text: Source text; empty text yields no chunks
    - chunk_size: Maximum characters per chunk (must be positive)
    - overlap: Characters shared by consecutive chunks (must be >= 0)

    Returns
    - A single ``{"type": "full"}`` chunk when the text fits in one window,
      otherwise chunks tagged ``{"type": "chunk", "index", "total"}``.
    """
    if chunk_size <= 0:
        raise InvalidInputError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0:
        raise InvalidInputError(f"overlap must be non-negative, got {overlap}")
    if not text:
        return []

    if len(text) <= chunk_size:
        return [Chunk(text, 0, len(text), {"type": "full", "index": 0, "total": 1})]

    spans = []
    start = 0
    while True:
        end = _window_end(text, start, chunk_size)
        spans.append((start, end))
        if end >= len(text):
            break
        next_start = max(end - overlap, 0)
        # overlap >= window length would stall the walk; continue without overlap.
        start = next_start if next_start > start else end

    total = len(spans)
    return [
        Chunk(text[s:e], s, e, {"type": "chunk", "index": i, "total": total})
        for i, (s, e) in enumerate(spans)
    ]
