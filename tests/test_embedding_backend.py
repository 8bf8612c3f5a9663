"""Tests for embedding backends."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import MagicMock

import httpx
import numpy as np
import pytest

from lexkb.config import AppConfig
from lexkb.embedding.encoder import (
    EmbeddingConfig,
    EmbeddingModel,
    HashingEmbedder,
    OpenAIEmbedder,
    create_embedder,
    embedder_identity,
)
from lexkb.errors import ConfigurationError, EmbeddingServiceError, MissingCredentialsError


class TestHashingEmbedder:
    """Test the deterministic offline embedder."""

    def test_deterministic(self) -> None:
        embedder = HashingEmbedder(dimension=32)

        first = asyncio.run(embedder.embed(["Bounced cheque claim"]))
        second = asyncio.run(embedder.embed(["bounced CHEQUE claim"]))

        assert first == second
        assert len(first[0]) == 32

    def test_unit_length(self) -> None:
        vector = HashingEmbedder().encode("rental dispute committee")

        assert np.linalg.norm(vector) == pytest.approx(1.0)

    def test_empty_text_is_zero_vector(self) -> None:
        vector = HashingEmbedder(dimension=8).encode("   ")

        assert not vector.any()

    def test_one_vector_per_text(self) -> None:
        vectors = asyncio.run(HashingEmbedder().embed(["a", "b", "c"]))

        assert len(vectors) == 3

    def test_invalid_dimension(self) -> None:
        with pytest.raises(ConfigurationError):
            HashingEmbedder(dimension=0)


class TestEmbeddingModel:
    """Test the sentence-transformers wrapper without loading a model."""

    def _model_with(self, encoded: np.ndarray) -> EmbeddingModel:
        model = EmbeddingModel(EmbeddingConfig(model_name="test-model", batch_size=4))
        fake = MagicMock()
        fake.encode.return_value = encoded
        fake.get_sentence_embedding_dimension.return_value = encoded.shape[1]
        model._model = fake
        return model

    def test_embed_returns_lists(self) -> None:
        model = self._model_with(np.array([[0.1, 0.2], [0.3, 0.4]], dtype="float64"))

        vectors = asyncio.run(model.embed(["one", "two"]))

        assert len(vectors) == 2
        assert vectors[0] == pytest.approx([0.1, 0.2])
        model._model.encode.assert_called_once_with(
            ["one", "two"],
            batch_size=4,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )

    def test_encode_is_float32(self) -> None:
        model = self._model_with(np.array([[0.1, 0.2]], dtype="float64"))

        assert model.encode(["one"]).dtype == np.float32

    def test_dimension(self) -> None:
        assert self._model_with(np.zeros((1, 384))).dimension == 384

    def test_empty_input_skips_model(self) -> None:
        model = self._model_with(np.zeros((0, 2)))

        assert asyncio.run(model.embed([])) == []
        model._model.encode.assert_not_called()

    def test_model_failure_wrapped(self) -> None:
        model = self._model_with(np.zeros((1, 2)))
        model._model.encode.side_effect = RuntimeError("CUDA out of memory")

        with pytest.raises(EmbeddingServiceError, match="CUDA out of memory"):
            asyncio.run(model.embed(["text"]))

    def test_count_mismatch(self) -> None:
        model = self._model_with(np.zeros((1, 2)))

        with pytest.raises(EmbeddingServiceError, match="1 vectors for 2 texts"):
            asyncio.run(model.embed(["a", "b"]))


class TestOpenAIEmbedder:
    """Test the remote embedder against a mocked transport."""

    def test_request_and_ordering(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"index": 1, "embedding": [0.0, 1.0]},
                        {"index": 0, "embedding": [1.0, 0.0]},
                    ]
                },
            )

        embedder = OpenAIEmbedder(
            "sk-test",
            model="text-embedding-3-small",
            base_url="https://example.test/v1/",
            transport=httpx.MockTransport(handler),
        )

        vectors = asyncio.run(embedder.embed(["first", "second"]))

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert seen["url"] == "https://example.test/v1/embeddings"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"] == {"model": "text-embedding-3-small", "input": ["first", "second"]}

    def test_missing_key(self) -> None:
        embedder = OpenAIEmbedder("")

        with pytest.raises(MissingCredentialsError):
            asyncio.run(embedder.embed(["text"]))

    def test_http_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(429, text="rate limited"))
        embedder = OpenAIEmbedder("sk-test", transport=transport)

        with pytest.raises(EmbeddingServiceError, match="429"):
            asyncio.run(embedder.embed(["text"]))

    def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        embedder = OpenAIEmbedder("sk-test", transport=httpx.MockTransport(handler))

        with pytest.raises(EmbeddingServiceError, match="connection refused"):
            asyncio.run(embedder.embed(["text"]))

    def test_malformed_response(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"nope": []}))
        embedder = OpenAIEmbedder("sk-test", transport=transport)

        with pytest.raises(EmbeddingServiceError, match="no 'data'"):
            asyncio.run(embedder.embed(["text"]))

    def test_count_mismatch(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})
        )
        embedder = OpenAIEmbedder("sk-test", transport=transport)

        with pytest.raises(EmbeddingServiceError):
            asyncio.run(embedder.embed(["a", "b"]))

    def test_empty_input_no_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        embedder = OpenAIEmbedder("", transport=httpx.MockTransport(handler))

        assert asyncio.run(embedder.embed([])) == []


class TestCreateEmbedder:
    """Test backend selection."""

    def test_local(self) -> None:
        embedder = create_embedder(AppConfig(model_name="some-model"))

        assert isinstance(embedder, EmbeddingModel)
        assert embedder.config.model_name == "some-model"

    def test_openai(self) -> None:
        embedder = create_embedder(AppConfig(embedding_backend="openai", openai_api_key="sk"))

        assert isinstance(embedder, OpenAIEmbedder)
        assert embedder.api_key == "sk"

    def test_stub(self) -> None:
        assert isinstance(create_embedder(AppConfig(embedding_backend="stub")), HashingEmbedder)

    def test_identities_name_backend_and_model(self) -> None:
        """Each backend reports an identity distinguishing its vectors."""
        local = create_embedder(AppConfig(model_name="some-model"))
        remote = create_embedder(AppConfig(embedding_backend="openai", openai_model="emb-small"))
        stub = create_embedder(AppConfig(embedding_backend="stub"))

        assert embedder_identity(local) == "local:some-model"
        assert embedder_identity(remote) == "openai:emb-small"
        assert embedder_identity(stub) == "stub:hashing-256"
        assert embedder_identity(HashingEmbedder(dimension=32)) != embedder_identity(stub)

    def test_identity_missing(self) -> None:
        """Embedders that declare no identity yield None."""
        assert embedder_identity(object()) is None

    def test_unknown(self) -> None:
        config = AppConfig()
        config.embedding_backend = "magic"  # type: ignore[assignment]

        with pytest.raises(ConfigurationError):
            create_embedder(config)
