"""Wiring of the index components from an ``AppConfig``."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from lexkb.config import AppConfig
from lexkb.embedding.encoder import Embedder, create_embedder, embedder_identity
from lexkb.index.builder import IndexBuilder
from lexkb.index.result_cache import SearchResultCache
from lexkb.index.search import Searcher
from lexkb.index.service import IndexService
from lexkb.index.storage import CacheStore


@dataclass(slots=True)
class KnowledgeBase:
    config: AppConfig
    embedder: Embedder
    store: CacheStore
    service: IndexService
    cache: SearchResultCache
    searcher: Searcher


def create_knowledge_base(
    config: AppConfig,
    *,
    embedder: Embedder | None = None,
    base_dir: Path | None = None,
) -> KnowledgeBase:
    """Assemble store, builder, service and searcher sharing one embedder."""
    base_dir = base_dir if base_dir is not None else Path.cwd()
    embedder = embedder if embedder is not None else create_embedder(config)
    store = CacheStore(
        config.resolve_cache_path(base_dir),
        version=config.cache_version,
        embedder=embedder_identity(embedder),
    )
    builder = IndexBuilder(
        embedder,
        version=config.cache_version,
        chunk_chars=config.chunk_chars,
        overlap=config.overlap,
    )
    service = IndexService(
        builder,
        store,
        kb_dir=config.resolve_kb_dir(base_dir),
        build_timeout=config.build_timeout,
    )
    cache = SearchResultCache(config.search_cache_size, config.search_ttl)
    searcher = Searcher(embedder, service, cache=cache, top_k=config.top_k)
    return KnowledgeBase(
        config=config,
        embedder=embedder,
        store=store,
        service=service,
        cache=cache,
        searcher=searcher,
    )
