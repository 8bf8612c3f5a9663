"""Index building pipeline: documents -> chunks -> embeddings."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from lexkb.embedding.encoder import Embedder
from lexkb.errors import EmbeddingServiceError
from lexkb.ingestion.markdown_loader import load_documents
from lexkb.models import ChunkRecord, FileRecord, IndexGeneration
from lexkb.utils.text import check_chunking, chunk_text

LOGGER = logging.getLogger(__name__)


def embeddable_text(record: FileRecord) -> str:
    """Text blob embedded for a file: serialised metadata plus both bodies."""
    metadata = json.dumps(record.metadata, ensure_ascii=False)
    return f"{metadata}\n{record.body['en']}\n{record.body['ar']}"


@dataclass(slots=True)
class BuildResult:
    generation: IndexGeneration
    duration_ms: int


class IndexBuilder:
    """Coordinates document loading, chunking and embedding."""

    def __init__(
        self,
        embedder: Embedder,
        *,
        version: int,
        chunk_chars: int = 2500,
        overlap: int = 250,
    ) -> None:
        check_chunking(chunk_chars, overlap)
        self.embedder = embedder
        self.version = version
        self.chunk_chars = chunk_chars
        self.overlap = overlap

    async def build(self, root: Path) -> BuildResult:
        """Build a complete generation from the documents under ``root``.

        Any embedding failure aborts the whole build; no partial generation
        is ever returned.
        """
        start = time.monotonic()
        records = await asyncio.to_thread(load_documents, Path(root))
        LOGGER.info("Loaded %d documents from %s", len(records), root)

        chunks: list[ChunkRecord] = []
        for record in records:
            chunks.extend(await self._embed_file(record))

        try:
            generation = IndexGeneration(files=records, chunks=chunks, version=self.version)
        except ValueError as exc:
            # Only the embedding dimension check can fail for freshly loaded records.
            raise EmbeddingServiceError(f"inconsistent embeddings: {exc}") from exc
        duration_ms = int((time.monotonic() - start) * 1000)
        LOGGER.info(
            "Built index: %d files, %d chunks in %d ms",
            generation.file_count,
            generation.chunk_count,
            duration_ms,
        )
        return BuildResult(generation=generation, duration_ms=duration_ms)

    async def _embed_file(self, record: FileRecord) -> list[ChunkRecord]:
        parts = list(
            chunk_text(embeddable_text(record), max_chars=self.chunk_chars, overlap=self.overlap)
        )
        if not parts:
            return []

        try:
            vectors = await self.embedder.embed(parts)
        except EmbeddingServiceError:
            LOGGER.error("Embedding failed for %s", record.source_path)
            raise
        except Exception as exc:
            raise EmbeddingServiceError(f"embedding failed for {record.id}: {exc}") from exc
        if len(vectors) != len(parts):
            raise EmbeddingServiceError(
                f"expected {len(parts)} embeddings for {record.id}, got {len(vectors)}"
            )

        return [
            ChunkRecord(
                id=f"{record.id}#{ordinal}",
                file_id=record.id,
                ordinal=ordinal,
                text=text,
                metadata=record.metadata,
                embedding=tuple(float(value) for value in vector),
            )
            for ordinal, (text, vector) in enumerate(zip(parts, vectors))
        ]
