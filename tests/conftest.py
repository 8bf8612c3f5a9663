from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Sequence

import pytest

from lexkb.config import AppConfig
from lexkb.embedding.encoder import HashingEmbedder
from lexkb.errors import EmbeddingServiceError
from lexkb.index.builder import IndexBuilder
from lexkb.index.storage import CacheStore
from lexkb.index.service import IndexService
from lexkb.models import CACHE_VERSION

SEPARATOR = "\n— — —\n"


def write_document(path: Path, metadata: dict | None, english: str, arabic: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    head = json.dumps(metadata, ensure_ascii=False) + "\n" if metadata is not None else ""
    body = english + (SEPARATOR + arabic if arabic else "")
    path.write_text(head + body, encoding="utf-8")
    return path


def meta(title: str, **extra: object) -> dict:
    data = {
        "title": title,
        "jurisdiction": "Dubai",
        "version": "1.0",
        "as_of": "2024-01-01",
        "tags": ["demo"],
    }
    data.update(extra)
    return data


class CountingEmbedder(HashingEmbedder):
    """Hashing embedder that records calls and can be slowed down or made to fail."""

    def __init__(self, *, delay: float = 0.0, fail: bool = False, dimension: int = 64) -> None:
        super().__init__(dimension=dimension)
        self.delay = delay
        self.fail = fail
        self.calls: list[list[str]] = []

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise EmbeddingServiceError("embedding backend unavailable")
        return await super().embed(texts)


@pytest.fixture
def kb_dir(tmp_path: Path) -> Path:
    """Knowledge base with three valid documents and two invalid ones."""
    root = tmp_path / "kb"
    write_document(
        root / "cheques.md",
        meta("Bounced cheques", tags=["cheque", "banking"]),
        "**Summary**\nA bounced cheque can lead to a civil claim for the cheque amount.\n"
        "**Steps**\nSend a notice and file with the court.",
        "**Summary**\nالشيك المرتجع يمكن أن يؤدي إلى دعوى مدنية.",
    )
    write_document(
        root / "labour" / "termination.md",
        meta("Employment termination", jurisdiction="UAE", tags=["labour"]),
        "**Summary**\nEnd of service gratuity and notice periods for employees.\n"
        "**Details**\nEmployers must pay gratuity after one year of service.",
        "**Summary**\nمكافأة نهاية الخدمة وفترات الإشعار.",
    )
    write_document(
        root / "tenancy.md",
        meta("Rental disputes", tags=["tenancy"]),
        "**Summary**\nRental disputes between landlord and tenant go to the rental committee.",
    )
    write_document(root / "notes.md", None, "No metadata here at all.")
    write_document(root / "broken.md", None, '{"title": "unterminated"\nbody text')
    (root / "readme.txt").write_text("ignored", encoding="utf-8")
    return root


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "kb-index.json"


@pytest.fixture
def embedder() -> CountingEmbedder:
    return CountingEmbedder()


@pytest.fixture
def store(cache_path: Path) -> CacheStore:
    return CacheStore(cache_path, version=CACHE_VERSION)


@pytest.fixture
def make_service(kb_dir: Path, store: CacheStore):
    def factory(embedder, *, chunk_chars: int = 200, overlap: int = 20, build_timeout: float = 30.0):
        builder = IndexBuilder(
            embedder, version=CACHE_VERSION, chunk_chars=chunk_chars, overlap=overlap
        )
        return IndexService(builder, store, kb_dir=kb_dir, build_timeout=build_timeout)

    return factory


@pytest.fixture
def app_config(kb_dir: Path, cache_path: Path) -> AppConfig:
    return AppConfig(
        kb_dir=kb_dir,
        cache_path=cache_path,
        chunk_chars=200,
        overlap=20,
        embedding_backend="stub",
        admin_key="test-admin",
        warm_start=False,
    )
