"""Tests for splitting responses into display-sized chunks."""

import pytest

from context_guard.transport.chunking import find_natural_split_point, split_response_into_chunks


@pytest.mark.parametrize("text", ["", "short answer", "x" * 2000])
def test_short_responses_are_single_chunk(text):
    assert split_response_into_chunks(text) == [text]


def test_paragraphs_grouped_under_limit():
    text = "\n\n".join(["a" * 10, "b" * 10, "c" * 10])
    assert split_response_into_chunks(text, 20) == ["a" * 10, "b" * 10, "c" * 10]

    text = "\n\n".join(["a" * 5, "b" * 5, "c" * 30])
    assert split_response_into_chunks(text, 20) == ["a" * 5 + "\n\n" + "b" * 5] + split_response_into_chunks("c" * 30, 20)


def test_sentence_break_past_seventy_percent():
    text = "a" * 40 + ". " + "b" * 30
    assert split_response_into_chunks(text, 50) == ["a" * 40 + ".", "b" * 30]


def test_early_punctuation_ignored_in_favor_of_space():
    text = "a" * 10 + ". " + "b" * 30 + " " + "c" * 30
    chunks = split_response_into_chunks(text, 50)
    assert chunks == ["a" * 10 + ". " + "b" * 30, "c" * 30]


def test_hard_cut_without_spaces():
    assert split_response_into_chunks("x" * 120, 50) == ["x" * 50, "x" * 50, "x" * 20]


def test_chunks_respect_limit_and_keep_text():
    words = " ".join(f"단어{i}" for i in range(1500))
    chunks = split_response_into_chunks(words, 2000)
    assert len(chunks) > 1
    assert all(len(c) <= 2000 for c in chunks)
    assert " ".join(chunks).split() == words.split()


def test_find_natural_split_point():
    assert find_natural_split_point("a" * 40 + "? " + "b" * 30, 50) == 42
    assert find_natural_split_point("aaa bbb", 5) == 4
    assert find_natural_split_point("abcdefgh", 5) == 5
