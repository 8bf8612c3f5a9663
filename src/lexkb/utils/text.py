"""Text helpers: overlapping character chunking and query normalisation."""

from __future__ import annotations

import re
from typing import Iterator

from lexkb.errors import ConfigurationError

_WHITESPACE = re.compile(r"\s+")


def check_chunking(max_chars: int, overlap: int) -> int:
    """Validate chunking parameters and return the advance step."""
    if max_chars <= 0:
        raise ConfigurationError(f"max_chars must be positive, got {max_chars}")
    if overlap < 0:
        raise ConfigurationError(f"overlap must not be negative, got {overlap}")
    if overlap >= max_chars:
        raise ConfigurationError(
            f"overlap ({overlap}) must be smaller than max_chars ({max_chars})"
        )
    return max_chars - overlap


def chunk_text(text: str, *, max_chars: int = 2500, overlap: int = 250) -> Iterator[str]:
    """Split text into overlapping character windows.

    Windows start every ``max_chars - overlap`` characters until the start
    reaches the end of the text, so empty text yields no chunks. Parameters
    are validated eagerly, before the first chunk is requested.
    """
    step = check_chunking(max_chars, overlap)
    return (text[start : start + max_chars] for start in range(0, len(text), step))


def normalize_query(query: str) -> str:
    """Trim, collapse whitespace and case-fold a search query."""
    return _WHITESPACE.sub(" ", query).strip().casefold()
