"""Tests for boundary-aware chunking."""

import pytest

from talent_index.common.errors import InvalidInputError
from talent_index.text.chunker import chunk

LONG_TEXT = " ".join(
    f"Sentence number {i} talks about Python, data pipelines and search quality." for i in range(60)
)


def test_short_text_is_single_full_chunk():
    """Text that fits the window yields one full chunk."""
    text = "Alice Johnson, Senior ML Engineer, 7 years, Python TensorFlow"
    chunks = chunk(text, chunk_size=1000, overlap=200)

    assert len(chunks) == 1
    assert chunks[0].text == text
    assert chunks[0].metadata["type"] == "full"
    assert (chunks[0].start_offset, chunks[0].end_offset) == (0, len(text))


def test_empty_text_yields_no_chunks():
    assert chunk("") == []


@pytest.mark.parametrize("chunk_size, overlap", [(0, 0), (-5, 0), (100, -1)])
def test_invalid_arguments_rejected(chunk_size, overlap):
    """Non-positive size or negative overlap is rejected."""
    with pytest.raises(InvalidInputError):
        chunk("some text", chunk_size=chunk_size, overlap=overlap)


@pytest.mark.parametrize("chunk_size, overlap", [(1000, 200), (300, 50), (120, 0), (64, 63), (50, 80)])
def test_chunks_cover_text_without_gaps(chunk_size, overlap):
    """Chunks cover the whole text and overlap within bounds."""
    chunks = chunk(LONG_TEXT, chunk_size=chunk_size, overlap=overlap)

    assert chunks[0].start_offset == 0
    assert chunks[-1].end_offset == len(LONG_TEXT)
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start_offset <= previous.end_offset
        assert previous.end_offset - current.start_offset <= overlap
        assert current.start_offset > previous.start_offset
    for c in chunks:
        assert c.text == LONG_TEXT[c.start_offset:c.end_offset]
        assert len(c.text) <= chunk_size


def test_chunk_metadata_indexes():
    chunks = chunk(LONG_TEXT, chunk_size=300, overlap=50)

    assert len(chunks) > 1
    assert [c.metadata["index"] for c in chunks] == list(range(len(chunks)))
    assert all(c.metadata["total"] == len(chunks) for c in chunks)
    assert all(c.metadata["type"] == "chunk" for c in chunks)


def test_chunking_is_deterministic():
    """Same arguments produce identical chunks."""
    assert chunk(LONG_TEXT, 250, 40) == chunk(LONG_TEXT, 250, 40)


def test_window_ends_on_sentence_boundary():
    """Windows snap to a sentence terminator past the midpoint."""
    text = "a" * 60 + ". " + "b" * 60
    chunks = chunk(text, chunk_size=100, overlap=10)

    assert chunks[0].text.endswith(".")
    assert chunks[0].end_offset == 61


def test_window_falls_back_to_space_then_hard_cut():
    spaced = "x" * 70 + " " + "y" * 70
    assert chunk(spaced, chunk_size=100, overlap=0)[0].end_offset == 70

    solid = "z" * 250
    chunks = chunk(solid, chunk_size=100, overlap=0)
    assert [c.end_offset for c in chunks] == [100, 200, 250]
