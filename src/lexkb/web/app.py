"""FastAPI application exposing knowledge-base search and reindexing."""

from __future__ import annotations

import asyncio
import hmac
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, List

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from lexkb import __version__
from lexkb.config import AppConfig, load_config
from lexkb.embedding.encoder import Embedder
from lexkb.errors import (
    EmbeddingServiceError,
    IndexBuildTimeoutError,
    IndexNotReadyError,
    MissingCredentialsError,
)
from lexkb.index.factory import KnowledgeBase, create_knowledge_base
from lexkb.models import SearchHit

LOGGER = logging.getLogger(__name__)

MAX_TOP_K = 50


class SearchPayload(BaseModel):
    q: str = ""
    top_k: int | None = None


class SearchItem(BaseModel):
    id: str
    title: Any = None
    jurisdiction: Any = None
    version: Any = None
    as_of: Any = None
    summaryEN: str = ""
    summaryAR: str = ""
    tags: Any = None
    score: float

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "SearchItem":
        return cls(
            id=hit.file_id,
            title=hit.title,
            jurisdiction=hit.jurisdiction,
            version=hit.version,
            as_of=hit.as_of,
            summaryEN=hit.summary.get("en", ""),
            summaryAR=hit.summary.get("ar", ""),
            tags=hit.tags,
            score=hit.score,
        )


def _check_admin_key(config: AppConfig, supplied: str | None) -> None:
    # An unset admin key disables reindexing entirely.
    if not config.admin_key or supplied is None:
        raise HTTPException(status_code=403, detail="Forbidden")
    if not hmac.compare_digest(supplied.encode("utf-8"), config.admin_key.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Forbidden")


async def _warm_up(kb: KnowledgeBase) -> None:
    try:
        await kb.service.ensure_ready()
    except Exception:
        LOGGER.exception("Index warm-up failed; it will be retried on the next request")


def _knowledge_base(request: Request) -> KnowledgeBase:
    return request.app.state.kb


def create_app(
    config: AppConfig | None = None,
    *,
    embedder: Embedder | None = None,
    base_dir: Path | None = None,
) -> FastAPI:
    """Build the web application around one ``KnowledgeBase``."""
    config = config if config is not None else load_config()
    kb = create_knowledge_base(config, embedder=embedder, base_dir=base_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
        warm_task = asyncio.create_task(_warm_up(kb)) if config.warm_start else None
        try:
            yield
        finally:
            if warm_task is not None:
                warm_task.cancel()
                await asyncio.gather(warm_task, return_exceptions=True)
            await kb.service.close()

    app = FastAPI(title="LexKB", version=__version__, lifespan=lifespan)
    app.state.kb = kb
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MissingCredentialsError)
    async def missing_credentials(request: Request, exc: MissingCredentialsError) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={
                "error": str(exc),
                "action": "Set the OPENAI_API_KEY environment variable and restart the server.",
            },
        )

    @app.exception_handler(IndexBuildTimeoutError)
    async def build_timeout(request: Request, exc: IndexBuildTimeoutError) -> JSONResponse:
        return JSONResponse(status_code=504, content={"error": str(exc)})

    @app.exception_handler(EmbeddingServiceError)
    async def embedding_failed(request: Request, exc: EmbeddingServiceError) -> JSONResponse:
        LOGGER.error("Embedding backend failed: %s", exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    @app.exception_handler(IndexNotReadyError)
    async def not_ready(request: Request, exc: IndexNotReadyError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"error": str(exc), "status": "index not ready"})

    @app.post("/api/kb/search")
    async def search_kb(payload: SearchPayload, request: Request) -> dict[str, List[SearchItem]]:
        kb = _knowledge_base(request)
        top_k = None
        if payload.top_k is not None:
            top_k = max(1, min(payload.top_k, MAX_TOP_K))
        hits = await kb.searcher.search(payload.q, top_k=top_k)
        return {"items": [SearchItem.from_hit(hit) for hit in hits]}

    async def reindex(request: Request, x_admin_key: str | None) -> dict[str, Any]:
        kb = _knowledge_base(request)
        _check_admin_key(kb.config, x_admin_key)
        info = await kb.service.reindex()
        return {"ok": True, **info.to_dict()}

    @app.post("/api/kb/index")
    async def index_kb(
        request: Request, x_admin_key: str | None = Header(default=None)
    ) -> dict[str, Any]:
        return await reindex(request, x_admin_key)

    @app.post("/api/kb/reindex-cache")
    async def reindex_cache(
        request: Request, x_admin_key: str | None = Header(default=None)
    ) -> dict[str, Any]:
        return await reindex(request, x_admin_key)

    @app.get("/api/kb/status")
    async def kb_status(request: Request) -> dict[str, Any]:
        kb = _knowledge_base(request)
        info = kb.service.info
        last_error = kb.service.last_error
        return {
            "state": kb.service.state.value,
            "generation": info.to_dict() if info is not None else None,
            "lastError": str(last_error) if last_error is not None else None,
            "searchCache": kb.cache.stats(),
        }

    return app
