"""Semantic search over the current index generation."""

from __future__ import annotations

import logging
from typing import List, Sequence

import numpy as np

from lexkb.embedding.encoder import Embedder
from lexkb.errors import EmbeddingServiceError, IndexNotReadyError
from lexkb.index.result_cache import SearchResultCache
from lexkb.index.service import IndexService
from lexkb.models import IndexGeneration, SearchHit
from lexkb.utils.text import normalize_query

LOGGER = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors; 0 if either has zero magnitude."""
    left = np.asarray(a, dtype="float64")
    right = np.asarray(b, dtype="float64")
    if left.shape != right.shape:
        raise ValueError(f"vector shapes differ: {left.shape} vs {right.shape}")
    norm = float(np.linalg.norm(left)) * float(np.linalg.norm(right))
    if norm == 0.0:
        return 0.0
    return float(np.dot(left, right) / norm)


def score_chunks(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of every matrix row against ``query``."""
    matrix = np.asarray(matrix, dtype="float64")
    query = np.asarray(query, dtype="float64")
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(norms > 0, dots / norms, 0.0)


def rank_files(
    generation: IndexGeneration, query_vector: Sequence[float], *, top_k: int = 5
) -> List[SearchHit]:
    """Best-scoring distinct files for ``query_vector``.

    Chunks are sorted by descending score with a stable sort, so equal
    scores keep chunk order; each file is reported once, at the score of
    its best chunk.
    """
    if generation.chunk_count == 0 or top_k < 1:
        return []
    query = np.asarray(query_vector, dtype="float64")
    if query.shape != (generation.dimension,):
        raise EmbeddingServiceError(
            f"query embedding has shape {query.shape}, index dimension is {generation.dimension}"
        )

    scores = score_chunks(generation.embedding_matrix(), query)
    order = np.argsort(-scores, kind="stable")

    hits: List[SearchHit] = []
    seen: set[str] = set()
    for idx in order:
        chunk = generation.chunks[idx]
        if chunk.file_id in seen:
            continue
        seen.add(chunk.file_id)
        record = generation.file_by_id(chunk.file_id)
        if record is not None:
            hits.append(SearchHit.from_file(record, float(scores[idx])))
        if len(hits) >= top_k:
            break
    return hits


class Searcher:
    """High-level API to query the knowledge base."""

    def __init__(
        self,
        embedder: Embedder,
        service: IndexService,
        *,
        cache: SearchResultCache | None = None,
        top_k: int = 5,
    ) -> None:
        self.embedder = embedder
        self.service = service
        self.cache = cache
        self.top_k = top_k
        if cache is not None:
            service.subscribe(lambda _generation: cache.clear())

    async def search(self, query: str, *, top_k: int | None = None) -> List[SearchHit]:
        """Return up to ``top_k`` distinct files matching ``query``.

        Blank queries return nothing without touching the index or the
        embedding backend. Only searches at the default ``top_k`` are cached.
        """
        key = normalize_query(query)
        if not key:
            return []
        limit = self.top_k if top_k is None else top_k
        if limit < 1:
            return []
        use_cache = self.cache is not None and limit == self.top_k
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        await self.service.ensure_ready()
        generation = self.service.snapshot()
        if generation is None:
            raise IndexNotReadyError("index is not loaded")
        if generation.chunk_count == 0:
            return []

        vectors = await self.embedder.embed([query.strip()])
        if len(vectors) != 1:
            raise EmbeddingServiceError(f"expected one query embedding, got {len(vectors)}")
        hits = rank_files(generation, vectors[0], top_k=limit)
        LOGGER.debug("Query %r matched %d files", key, len(hits))

        if use_cache and self.service.snapshot() is generation:
            self.cache.put(key, hits)
        return hits
