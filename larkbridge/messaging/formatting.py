"""Outbound text shaping."""

from __future__ import annotations

TEXT_CHUNK_LIMIT = 2000


def split_message(text: str, max_len: int = TEXT_CHUNK_LIMIT) -> list[str]:
    """Split *text* into chunks of at most *max_len* characters.

    Prefers a newline boundary, then a space, and hard-splits otherwise.
    """
    if len(text) <= max_len:
        return [text]

    chunks: list[str] = []
    rest = text
    while len(rest) > max_len:
        cut = rest.rfind("\n", 0, max_len + 1)
        if cut <= 0:
            cut = rest.rfind(" ", 0, max_len + 1)
        if cut <= 0:
            chunks.append(rest[:max_len])
            rest = rest[max_len:]
            continue
        chunks.append(rest[:cut])
        rest = rest[cut + 1:]
    if rest:
        chunks.append(rest)
    return chunks
