"""Split long responses into display-sized chunks."""

from __future__ import annotations

import re

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_BREAKS = (". ", "? ", "! ", ", ")


def find_natural_split_point(text: str, max_length: int) -> int:
    """Index to cut *text* at: sentence punctuation past 70% of the limit,
    else the last space, else a hard cut."""
    punctuation = max(text.rfind(mark, 0, max_length) for mark in _SENTENCE_BREAKS)
    # The mark plus its trailing space must still fit
    if punctuation > max_length * 0.7 and punctuation + 2 <= max_length:
        return punctuation + 2
    space = text.rfind(" ", 0, max_length)
    if space > 0:
        return space + 1
    return max_length


def split_response_into_chunks(response: str, max_length: int = 2000) -> list[str]:
    """Group paragraphs into chunks of at most *max_length* characters."""
    if not response or len(response) <= max_length:
        return [response]

    chunks: list[str] = []
    current = ""
    for paragraph in _PARAGRAPH_RE.split(response):
        delimiter = "\n\n" if current else ""
        if len(current) + len(delimiter) + len(paragraph) <= max_length:
            current += delimiter + paragraph
            continue

        if current:
            chunks.append(current)
            current = ""

        if len(paragraph) <= max_length:
            current = paragraph
            continue

        remaining = paragraph
        while remaining:
            if len(remaining) <= max_length:
                chunks.append(remaining)
                break
            cut = find_natural_split_point(remaining, max_length)
            chunks.append(remaining[:cut].rstrip())
            remaining = remaining[cut:].strip()

    if current:
        chunks.append(current)
    return chunks
