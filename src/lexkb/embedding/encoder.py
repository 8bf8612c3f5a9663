"""Embedding backends.

Every backend exposes the same asynchronous capability::

    vectors = await embedder.embed(["text one", "text two"])

returning one vector per input text, in input order. Failures surface as
``EmbeddingServiceError`` so callers can treat all backends alike.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol, Sequence

import httpx
import numpy as np

from lexkb.errors import ConfigurationError, EmbeddingServiceError, MissingCredentialsError

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

    from lexkb.config import AppConfig

DEFAULT_MODEL = "sentence-transformers/all-mpnet-base-v2"
DEFAULT_OPENAI_MODEL = "text-embedding-3-large"

LOGGER = logging.getLogger(__name__)


class Embedder(Protocol):
    """Async text-to-vector capability.

    ``identity`` names the backend and model, e.g. ``openai:text-embedding-3-large``;
    caches built by one identity are not reused by another.
    """

    identity: str

    async def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


def _check_count(texts: Sequence[str], vectors: Sequence[Any]) -> None:
    if len(vectors) != len(texts):
        raise EmbeddingServiceError(
            f"embedding backend returned {len(vectors)} vectors for {len(texts)} texts"
        )


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] | None = None
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` for local embeddings.

    The model is loaded on first use so that building the web app or the CLI
    does not pay for it when the index hydrates from cache. Encoding runs in
    a worker thread to keep the event loop responsive.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._model: SentenceTransformer | None = None

    @property
    def identity(self) -> str:
        return f"local:{self.config.model_name}"

    def _load_model(self) -> "SentenceTransformer":
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            LOGGER.info("Loading embedding model %s", self.config.model_name)
            self._model = SentenceTransformer(
                self.config.model_name,
                backend=self.config.backend or "torch",
                device=self.config.device,
            )
        return self._model

    @property
    def dimension(self) -> int:
        return int(self._load_model().get_sentence_embedding_dimension())

    def encode(self, texts: Sequence[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        embeddings = self._load_model().encode(
            list(texts),
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            embeddings = await asyncio.to_thread(self.encode, texts)
        except Exception as exc:
            raise EmbeddingServiceError(f"local embedding failed: {exc}") from exc
        vectors = embeddings.tolist()
        _check_count(texts, vectors)
        return vectors


class OpenAIEmbedder:
    """Embeddings from an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.endpoint = f"{base_url.rstrip('/')}/embeddings"
        self.timeout = timeout
        self._transport = transport

    @property
    def identity(self) -> str:
        return f"openai:{self.model}"

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        if not self.api_key:
            raise MissingCredentialsError(
                "OpenAI API key is not configured. Set OPENAI_API_KEY and restart the server."
            )

        payload = {"model": self.model, "input": list(texts)}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.endpoint, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise EmbeddingServiceError(
                f"embedding request failed with {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise EmbeddingServiceError(f"embedding request failed: {exc}") from exc

        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise EmbeddingServiceError("embedding response has no 'data' list")
        items = sorted(items, key=lambda item: item.get("index", 0))
        vectors = [list(map(float, item["embedding"])) for item in items]
        _check_count(texts, vectors)
        return vectors


_TOKEN = re.compile(r"\w+", re.UNICODE)


class HashingEmbedder:
    """Deterministic offline embedder based on hashed word counts.

    Texts sharing words get similar vectors, which is enough for local
    development and tests without a model download or network access.
    """

    def __init__(self, dimension: int = 256) -> None:
        if dimension <= 0:
            raise ConfigurationError("dimension must be positive")
        self.dimension = dimension

    @property
    def identity(self) -> str:
        return f"stub:hashing-{self.dimension}"

    def encode(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype="float32")
        for token in _TOKEN.findall(text.casefold()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest, "little") % self.dimension
            vector[bucket] += 1.0
        norm = float(np.linalg.norm(vector))
        if norm:
            vector /= norm
        return vector

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        return [self.encode(text).tolist() for text in texts]


def embedder_identity(embedder: object) -> str | None:
    """Identity of ``embedder``, or ``None`` for backends that do not declare one."""
    identity = getattr(embedder, "identity", None)
    return identity if isinstance(identity, str) else None


def create_embedder(config: "AppConfig") -> Embedder:
    """Build the embedding backend selected by ``config.embedding_backend``."""
    backend = config.embedding_backend
    if backend == "local":
        return EmbeddingModel(EmbeddingConfig(model_name=config.model_name))
    if backend == "openai":
        return OpenAIEmbedder(
            config.openai_api_key,
            model=config.openai_model,
            base_url=config.openai_base_url,
        )
    if backend == "stub":
        return HashingEmbedder()
    raise ConfigurationError(f"Unknown embedding backend: {backend!r}")
