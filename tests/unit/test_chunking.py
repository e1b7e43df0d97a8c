"""Unit tests for chunk_text — overlapping windows with sentence-aware cuts."""

from __future__ import annotations

import pytest

from chatkb.services.chunking import chunk_text, normalize_whitespace


class TestBasicChunking:
    def test_empty_and_whitespace_only(self) -> None:
        assert chunk_text("") == []
        assert chunk_text("   \n\t  ") == []

    def test_short_text_is_single_chunk(self) -> None:
        assert chunk_text("Hello world.") == ["Hello world."]

    def test_whitespace_is_collapsed(self) -> None:
        assert chunk_text("  Hello \n\n  world\tagain  ") == ["Hello world again"]
        assert normalize_whitespace(" a \n b ") == "a b"

    def test_small_window_with_overlap(self) -> None:
        assert chunk_text("A. B. C.", chunk_size=4, overlap=1) == ["A. B", "B. C", "C."]


class TestWindowing:
    def test_every_chunk_respects_size(self) -> None:
        text = " ".join(f"word{i}" for i in range(2000))
        chunks = chunk_text(text, chunk_size=300, overlap=50)

        assert len(chunks) > 1
        assert all(0 < len(c) <= 300 for c in chunks)

    def test_chunks_cover_the_whole_text(self) -> None:
        text = " ".join(f"token{i:04d}" for i in range(500))
        chunks = chunk_text(text, chunk_size=120, overlap=20)

        for i in range(500):
            assert any(f"token{i:04d}" in c for c in chunks), f"token{i:04d} missing"
        assert chunks[0].startswith("token0000")
        assert chunks[-1].endswith("token0499")

    def test_consecutive_chunks_overlap(self) -> None:
        text = "abcdefghij" * 30
        chunks = chunk_text(text, chunk_size=100, overlap=25)

        for prev, nxt in zip(chunks, chunks[1:]):
            assert prev[-25:] == nxt[:25]

    def test_cuts_after_sentence_when_past_half(self) -> None:
        sentence = "x" * 70 + ". "
        text = sentence + "y" * 200
        chunks = chunk_text(text, chunk_size=100, overlap=10)

        assert chunks[0] == "x" * 70 + "."

    def test_ignores_sentence_break_before_half(self) -> None:
        text = "x" * 20 + ". " + "y" * 200
        chunks = chunk_text(text, chunk_size=100, overlap=10)

        assert len(chunks[0]) == 100

    def test_chunking_is_deterministic(self) -> None:
        text = "Cats eat fish. Dogs bark loudly. " * 80
        assert chunk_text(text, 200, 40) == chunk_text(text, 200, 40)


class TestGuards:
    @pytest.mark.parametrize(
        "size,overlap",
        [(0, 0), (-5, 0), (100, -1), (100, 100), (100, 150)],
    )
    def test_invalid_configuration_raises(self, size: int, overlap: int) -> None:
        with pytest.raises(ValueError):
            chunk_text("some text", chunk_size=size, overlap=overlap)
