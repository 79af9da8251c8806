"""Tests for pixie.channels.formatting."""

from __future__ import annotations

import pytest

from pixie.channels.formatting import TELEGRAM_MAX_LEN, excerpt, split_message


class TestSplitMessage:
    def test_short_text_is_one_chunk(self):
        assert split_message("hello") == ["hello"]

    def test_empty_text(self):
        assert split_message("") == []

    @pytest.mark.parametrize("length", [4095, 4096, 4097, 8192, 10000])
    def test_chunks_fit_and_concatenate_back(self, length):
        text = "".join(chr(ord("a") + i % 26) for i in range(length))
        chunks = split_message(text)
        assert all(len(c) <= TELEGRAM_MAX_LEN for c in chunks)
        assert "".join(chunks) == text

    def test_fixed_boundaries(self):
        chunks = split_message("a" * 4096 + "b" * 10)
        assert chunks == ["a" * 4096, "b" * 10]

    def test_custom_limit(self):
        assert split_message("abcdefg", 3) == ["abc", "def", "g"]

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            split_message("abc", 0)


def test_excerpt_flattens_and_truncates():
    assert excerpt("a\nb") == "a b"
    assert excerpt("x" * 300, limit=10) == "x" * 9 + "…"
