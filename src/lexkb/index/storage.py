"""Durable JSON cache of the built index."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from lexkb.errors import CacheCorruptionError
from lexkb.models import ChunkRecord, FileRecord, IndexGeneration

LOGGER = logging.getLogger(__name__)


class CacheStore:
    """Persistence layer for index generations.

    The cache is a single JSON document::

        {"versionStamp": 2, "embedder": "stub:hashing-256", "builtAt": "...",
         "files": [...], "chunks": [...]}

    A payload written with another ``versionStamp`` is treated as absent. When
    the store knows the ``embedder`` identity, a payload produced by another
    embedding backend or model is treated as absent too, since its vectors
    are not comparable with new query embeddings.
    """

    def __init__(self, path: Path, *, version: int, embedder: str | None = None) -> None:
        self.path = Path(path)
        self.version = version
        self.embedder = embedder

    def persist(self, generation: IndexGeneration) -> None:
        """Write ``generation`` atomically: temp file in the same directory, then replace."""
        payload = {
            "versionStamp": generation.version,
            "embedder": self.embedder,
            "dimension": generation.dimension,
            "builtAt": generation.built_at,
            "files": [record.to_dict() for record in generation.files],
            "chunks": [chunk.to_dict() for chunk in generation.chunks],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        LOGGER.info(
            "Persisted index cache %s (%d files, %d chunks)",
            self.path,
            generation.file_count,
            generation.chunk_count,
        )

    def _read_payload(self) -> dict[str, Any]:
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except FileNotFoundError:
            raise
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CacheCorruptionError(f"unreadable cache {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise CacheCorruptionError(f"cache {self.path} is not a JSON object")
        return payload

    def load(self) -> IndexGeneration:
        """Load the cached generation.

        Raises:
            FileNotFoundError: if no cache file exists.
            CacheCorruptionError: if the payload is unreadable, malformed or
                carries a different version stamp or embedder.
        """
        payload = self._read_payload()
        stamp = payload.get("versionStamp")
        if stamp != self.version:
            raise CacheCorruptionError(
                f"cache version {stamp!r} does not match expected {self.version!r}"
            )
        producer = payload.get("embedder")
        if self.embedder is not None and producer != self.embedder:
            raise CacheCorruptionError(
                f"cache was built by embedder {producer!r}, expected {self.embedder!r}"
            )
        files = payload.get("files")
        chunks = payload.get("chunks")
        if not isinstance(files, list) or not isinstance(chunks, list):
            raise CacheCorruptionError("cache payload must contain 'files' and 'chunks' lists")
        try:
            return IndexGeneration(
                files=[FileRecord.from_dict(item) for item in files],
                chunks=[ChunkRecord.from_dict(item) for item in chunks],
                version=self.version,
                built_at=str(payload.get("builtAt") or ""),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise CacheCorruptionError(f"invalid cache records: {exc}") from exc

    def hydrate(self) -> IndexGeneration | None:
        """Return the cached generation, or ``None`` when it is missing or unusable."""
        try:
            generation = self.load()
        except FileNotFoundError:
            LOGGER.info("No index cache at %s", self.path)
            return None
        except CacheCorruptionError as exc:
            LOGGER.warning("Ignoring index cache: %s", exc)
            return None
        LOGGER.info(
            "Hydrated index cache %s (%d files, %d chunks)",
            self.path,
            generation.file_count,
            generation.chunk_count,
        )
        return generation

    def describe(self) -> dict[str, Any] | None:
        """Summarise the cache file on disk without validating its records."""
        try:
            payload = self._read_payload()
        except FileNotFoundError:
            return None
        except CacheCorruptionError as exc:
            return {"path": str(self.path), "current": False, "error": str(exc)}
        files = payload.get("files")
        chunks = payload.get("chunks")
        stamp = payload.get("versionStamp")
        producer = payload.get("embedder")
        return {
            "path": str(self.path),
            "version": stamp,
            "embedder": producer,
            "current": stamp == self.version
            and (self.embedder is None or producer == self.embedder),
            "builtAt": payload.get("builtAt"),
            "fileCount": len(files) if isinstance(files, list) else 0,
            "chunkCount": len(chunks) if isinstance(chunks, list) else 0,
        }
