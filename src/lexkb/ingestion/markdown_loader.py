"""Bilingual markdown loading.

Knowledge-base documents are markdown files that open with a JSON object of
metadata, followed by the English body, a separator line and the Arabic
body::

    {"title": "...", "jurisdiction": "...", "version": "...", "as_of": "...", "tags": []}
    **Summary**
    English text...
    — — —
    **Summary**
    Arabic text...
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from lexkb.errors import SourceDocumentError
from lexkb.models import FileRecord
from lexkb.utils.files import document_id, iter_document_paths

LOGGER = logging.getLogger(__name__)

LANGUAGE_SEPARATOR = "\n— — —\n"
SUMMARY_MARKER = "**Summary**"
HEADING_MARKER = "\n**"
SUMMARY_LIMIT = 600
REQUIRED_METADATA = ("title", "jurisdiction", "version", "as_of", "tags")


def _find_object_end(text: str) -> int:
    """Return the index just past the leading JSON object, or -1."""
    depth = 0
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index + 1
    return -1


def parse_front_json(raw: str) -> tuple[dict[str, Any] | None, str]:
    """Split a leading JSON object from the rest of the document.

    Returns ``(None, text)`` when the text does not start with a complete,
    valid JSON object.
    """
    text = raw.lstrip("\ufeff").strip()
    if not text.startswith("{"):
        return None, text
    end = _find_object_end(text)
    if end < 0:
        return None, text
    try:
        metadata = json.loads(text[:end])
    except json.JSONDecodeError:
        return None, text
    if not isinstance(metadata, dict):
        return None, text
    return metadata, text[end:].strip()


def split_languages(body: str) -> tuple[str, str]:
    """Split a body into its English and Arabic sections."""
    if LANGUAGE_SEPARATOR not in body:
        return body.strip(), ""
    english, arabic = body.split(LANGUAGE_SEPARATOR, 1)
    return english.strip(), arabic.strip()


def extract_section(markdown: str, marker: str = SUMMARY_MARKER, *, limit: int = SUMMARY_LIMIT) -> str:
    """Return the text following ``marker`` up to the next bold heading."""
    start = markdown.find(marker)
    if start < 0:
        return ""
    after = markdown[start + len(marker) :]
    end = after.find(HEADING_MARKER)
    section = after[:end] if end >= 0 else after
    return section.strip()[:limit]


def load_document(path: Path, root: Path) -> FileRecord:
    """Parse a single document into a ``FileRecord``.

    Raises:
        SourceDocumentError: if the file cannot be read, has no leading JSON
            metadata object or misses a required metadata key.
    """
    try:
        # utf-8-sig drops a leading byte-order mark.
        raw = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise SourceDocumentError(path, f"unreadable: {exc}") from exc

    metadata, body = parse_front_json(raw)
    if metadata is None:
        raise SourceDocumentError(path, "no leading JSON metadata block")
    missing = [key for key in REQUIRED_METADATA if key not in metadata]
    if missing:
        raise SourceDocumentError(path, f"missing metadata keys: {', '.join(missing)}")

    english, arabic = split_languages(body)
    return FileRecord(
        id=document_id(path, root),
        source_path=path,
        metadata=metadata,
        summary={"en": extract_section(english), "ar": extract_section(arabic)},
        body={"en": english, "ar": arabic},
    )


def load_documents(root: Path) -> list[FileRecord]:
    """Load every valid document under ``root``; invalid ones are logged and skipped."""
    root = Path(root)
    base = root if root.is_dir() else root.parent
    records: list[FileRecord] = []
    seen: set[str] = set()
    for path in iter_document_paths(root):
        try:
            record = load_document(path, base)
        except SourceDocumentError as exc:
            LOGGER.warning("Skipping document %s", exc)
            continue
        if record.id in seen:
            LOGGER.warning("Skipping document %s: duplicate id %r", path, record.id)
            continue
        seen.add(record.id)
        records.append(record)
    if not records:
        LOGGER.warning("No valid documents found under %s", root)
    return records
