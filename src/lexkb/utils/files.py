"""Utility helpers for working with knowledge-base files."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

DOCUMENT_SUFFIXES = (".md",)


def iter_document_paths(root: Path) -> Iterator[Path]:
    """Yield markdown documents under ``root`` in a stable order."""
    root = Path(root)
    if root.is_file():
        if root.suffix.lower() in DOCUMENT_SUFFIXES:
            yield root
        return
    if not root.is_dir():
        return
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.suffix.lower() in DOCUMENT_SUFFIXES:
            yield path


def document_id(path: Path, root: Path) -> str:
    """Derive a stable id from the document path relative to the root.

    ``kb/labour/termination.md`` becomes ``labour/termination``.
    """
    path = Path(path)
    try:
        relative = path.relative_to(root)
    except ValueError:
        relative = Path(path.name)
    if relative == Path("."):
        relative = Path(path.name)
    return relative.with_suffix("").as_posix()
