"""
Unit tests for text processing: clean_text, chunk_by_tokens and keyword helpers.
"""

import pytest

from app.services.text_processing import (
    approx_token_len,
    chunk_by_tokens,
    clean_text,
    content_words,
    keyword_tokens,
)


class TestCleanText:
    """Tests for clean_text()."""

    def test_empty_returns_empty(self) -> None:
        assert clean_text("") == ""
        assert clean_text("   ") == ""
        assert clean_text("\n\n") == ""

    def test_strips_outer_whitespace(self) -> None:
        assert clean_text("  hello  ") == "hello"
        assert clean_text("\n  hello  \n") == "hello"

    def test_normalizes_inner_lines_and_dedupes(self) -> None:
        assert clean_text("  hello   \n\n  world  ") == "hello\n\nworld"
        assert clean_text("line1\n  line1  \nline2") == "line1\nline2"

    def test_collapses_blank_runs(self) -> None:
        assert clean_text("a\n\n\n\nb") == "a\n\nb"

    def test_nfkc_normalization(self) -> None:
        # Fullwidth letters fold to ASCII
        assert clean_text("Ｈｉ") == "Hi"


def _words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


class TestChunkByTokens:
    """Tests for chunk_by_tokens()."""

    def test_empty_returns_empty_list(self) -> None:
        assert chunk_by_tokens("") == []
        assert chunk_by_tokens("   ") == []

    def test_short_text_is_one_chunk(self) -> None:
        text = "A short paragraph about budgets."
        assert chunk_by_tokens(text, 900, 120) == [text]

    def test_chunks_respect_token_window(self) -> None:
        chunks = chunk_by_tokens(_words(5000), 900, 120)
        assert len(chunks) > 1
        for chunk in chunks:
            assert approx_token_len(chunk) <= 900

    def test_consecutive_chunks_overlap_by_at_least_overlap_tokens(self) -> None:
        chunks = chunk_by_tokens(_words(5000), 900, 120)
        first, second = chunks[0].split(), chunks[1].split()
        start = first.index(second[0])
        shared = first[start:]
        assert second[: len(shared)] == shared
        assert approx_token_len(" ".join(shared)) >= 120

    def test_max_chunks_caps_output(self) -> None:
        chunks = chunk_by_tokens(_words(20000), 900, 120, max_chunks=8)
        assert len(chunks) == 8

    def test_every_word_is_covered_without_cap(self) -> None:
        text = _words(3000)
        chunks = chunk_by_tokens(text, 200, 20)
        covered = set()
        for chunk in chunks:
            covered.update(chunk.split())
        assert covered == set(text.split())

    def test_overlap_not_smaller_than_window_raises(self) -> None:
        with pytest.raises(ValueError):
            chunk_by_tokens("some words here", 100, 100)


class TestKeywords:
    def test_keyword_tokens_unique_and_min_length(self) -> None:
        assert keyword_tokens("The EU AI act, the AI Act!", min_len=3) == ["the", "act"]

    def test_keyword_tokens_non_latin(self) -> None:
        assert keyword_tokens("서울 인구 통계, 東京 snake_case") == ["서울", "인구", "통계", "東京", "snake", "case"]

    def test_content_words_drop_stopwords(self) -> None:
        assert content_words("Compare Canada and Australia immigration policies") == [
            "canada",
            "australia",
            "immigration",
            "policies",
        ]
