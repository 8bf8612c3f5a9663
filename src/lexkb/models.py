"""Core LexKB data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping

import numpy as np

# Bump whenever FileRecord/ChunkRecord serialisation or the chunking and
# embedding scheme changes; caches written with another stamp are rebuilt.
CACHE_VERSION = 2

LANGUAGES = ("en", "ar")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True, slots=True)
class FileRecord:
    """One knowledge-base document split into its language sections."""

    id: str
    source_path: Path
    metadata: Dict[str, Any]
    summary: Dict[str, str]
    body: Dict[str, str]

    @property
    def title(self) -> str:
        return str(self.metadata.get("title", self.id))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_path": str(self.source_path),
            "metadata": self.metadata,
            "summary": dict(self.summary),
            "body": dict(self.body),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FileRecord":
        metadata = data["metadata"]
        if not isinstance(metadata, dict):
            raise ValueError(f"file {data.get('id')!r} has no metadata object")
        return cls(
            id=str(data["id"]),
            source_path=Path(data["source_path"]),
            metadata=metadata,
            summary={lang: str(data["summary"].get(lang, "")) for lang in LANGUAGES},
            body={lang: str(data["body"].get(lang, "")) for lang in LANGUAGES},
        )


@dataclass(frozen=True, slots=True)
class ChunkRecord:
    """Chunk of document text paired with its embedding."""

    id: str
    file_id: str
    ordinal: int
    text: str
    metadata: Dict[str, Any]
    embedding: tuple[float, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_id": self.file_id,
            "ordinal": self.ordinal,
            "text": self.text,
            "metadata": self.metadata,
            "embedding": list(self.embedding),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChunkRecord":
        return cls(
            id=str(data["id"]),
            file_id=str(data["file_id"]),
            ordinal=int(data["ordinal"]),
            text=str(data["text"]),
            metadata=dict(data.get("metadata") or {}),
            embedding=tuple(float(value) for value in data["embedding"]),
        )


@dataclass(frozen=True)
class IndexGeneration:
    """One complete, immutable build of the index.

    Construction checks the generation invariants: chunk ids are unique,
    every chunk points at a file of this generation and all embeddings
    share one dimension.
    """

    files: tuple[FileRecord, ...]
    chunks: tuple[ChunkRecord, ...]
    version: int
    built_at: str = field(default_factory=utc_now)
    _files_by_id: Dict[str, FileRecord] = field(init=False, repr=False, compare=False)
    _matrix: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "files", tuple(self.files))
        object.__setattr__(self, "chunks", tuple(self.chunks))

        files_by_id = {record.id: record for record in self.files}
        if len(files_by_id) != len(self.files):
            raise ValueError("duplicate file ids in generation")

        seen: set[str] = set()
        dimension: int | None = None
        for chunk in self.chunks:
            if chunk.id in seen:
                raise ValueError(f"duplicate chunk id {chunk.id!r}")
            seen.add(chunk.id)
            if chunk.file_id not in files_by_id:
                raise ValueError(f"chunk {chunk.id!r} references unknown file {chunk.file_id!r}")
            if dimension is None:
                dimension = len(chunk.embedding)
            elif len(chunk.embedding) != dimension:
                raise ValueError(
                    f"chunk {chunk.id!r} has dimension {len(chunk.embedding)}, expected {dimension}"
                )

        if self.chunks:
            matrix = np.asarray([chunk.embedding for chunk in self.chunks], dtype="float32")
        else:
            matrix = np.zeros((0, 0), dtype="float32")
        matrix.setflags(write=False)
        object.__setattr__(self, "_files_by_id", files_by_id)
        object.__setattr__(self, "_matrix", matrix)

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def dimension(self) -> int:
        return int(self._matrix.shape[1]) if self.chunks else 0

    def file_by_id(self, file_id: str) -> FileRecord | None:
        return self._files_by_id.get(file_id)

    def embedding_matrix(self) -> np.ndarray:
        """Read-only ``(chunk_count, dimension)`` matrix in chunk order."""
        return self._matrix


@dataclass(slots=True)
class GenerationInfo:
    """Descriptor of the generation produced by a hydrate or (re)build."""

    source: str
    file_count: int
    chunk_count: int
    built_at: str
    version: int
    cache_path: Path | None = None
    duration_ms: int | None = None

    @classmethod
    def describe(
        cls,
        source: str,
        generation: IndexGeneration,
        *,
        cache_path: Path | None = None,
        duration_ms: int | None = None,
    ) -> "GenerationInfo":
        return cls(
            source=source,
            file_count=generation.file_count,
            chunk_count=generation.chunk_count,
            built_at=generation.built_at,
            version=generation.version,
            cache_path=cache_path,
            duration_ms=duration_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "fileCount": self.file_count,
            "chunkCount": self.chunk_count,
            "builtAt": self.built_at,
            "version": self.version,
            "cachePath": str(self.cache_path) if self.cache_path else None,
            "durationMs": self.duration_ms,
        }


@dataclass(frozen=True, slots=True)
class SearchHit:
    """A distinct knowledge-base file matched by a query."""

    file_id: str
    title: str
    jurisdiction: Any
    version: Any
    as_of: Any
    summary: Dict[str, str]
    tags: Any
    score: float

    @classmethod
    def from_file(cls, record: FileRecord, score: float) -> "SearchHit":
        meta = record.metadata
        return cls(
            file_id=record.id,
            title=meta.get("title"),
            jurisdiction=meta.get("jurisdiction"),
            version=meta.get("version"),
            as_of=meta.get("as_of"),
            summary=dict(record.summary),
            tags=meta.get("tags"),
            score=score,
        )
