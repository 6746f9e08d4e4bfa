"""Unit tests for the embedding client and vector helpers.

Tests cover:
- Embedding input preparation
- Cosine similarity edge cases
- Vector serialization
- Local and OpenAI providers behind mocks
- Error translation to EmbeddingServiceError and DimensionMismatch
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import numpy as np
import pytest

from config.settings import EmbeddingConfig, EmbeddingProvider
from indexer.embeddings import (
    EmbeddingClient,
    cosine_similarity,
    deserialize_embedding,
    prepare_text,
    serialize_embedding,
)
from indexer.errors import DimensionMismatch, EmbeddingServiceError


class TestPrepareText:

    def test_labels_and_order(self):
        text = prepare_text("Running shoe", "classified under 6404.11.90", "Because it is.")
        assert text == ("Product: Running shoe\n\n"
                        "Classification: classified under 6404.11.90\n\n"
                        "Rationale: Because it is.")

    def test_missing_parts_skipped(self):
        assert prepare_text(product_description="Backpack") == "Product: Backpack"
        assert prepare_text() == ""

    def test_rationale_truncated(self):
        text = prepare_text(rationale="r" * 5000)
        assert text == "Rationale: " + "r" * 2000


class TestVectorHelpers:

    def test_cosine_similarity(self):
        a = np.array([1.0, 0.0, 0.0])
        assert cosine_similarity(a, a) == pytest.approx(1.0)
        assert cosine_similarity(a, np.array([0.0, 1.0, 0.0])) == pytest.approx(0.0)
        assert cosine_similarity(a, np.array([-1.0, 0.0, 0.0])) == pytest.approx(-1.0)

    def test_zero_vector(self):
        assert cosine_similarity(np.zeros(3), np.array([1.0, 2.0, 3.0])) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(DimensionMismatch):
            cosine_similarity(np.ones(3), np.ones(4))
        # Also a ValueError for callers that only know numpy semantics
        with pytest.raises(ValueError):
            cosine_similarity(np.ones(3), np.ones(4))

    def test_serialization(self):
        vector = np.array([0.25, -0.5, 1.0], dtype=np.float32)
        restored = deserialize_embedding(serialize_embedding(vector))
        assert restored.dtype == np.float32
        np.testing.assert_array_equal(restored, vector)


class TestLocalProvider:
    """EmbeddingClient with a mocked sentence-transformers model."""

    @pytest.fixture
    def config(self):
        return EmbeddingConfig(provider=EmbeddingProvider.LOCAL, model="test-model",
                               dimension=3, max_input_chars=10)

    @pytest.fixture
    def mock_model(self):
        model = Mock()
        model.encode.return_value = np.array([[0.1, 0.2, 0.3]])
        return model

    @pytest.mark.asyncio
    async def test_embed(self, config, mock_model):
        with patch('indexer.embeddings.SentenceTransformer', return_value=mock_model) as mock_st:
            client = EmbeddingClient(config)
            vector = await client.embed("a very long product description")

        mock_st.assert_called_once_with("test-model")
        np.testing.assert_allclose(vector, [0.1, 0.2, 0.3], rtol=1e-6)
        # Input truncated to max_input_chars
        assert mock_model.encode.call_args[0][0] == ["a very lon"]

    @pytest.mark.asyncio
    async def test_model_loaded_once(self, config, mock_model):
        with patch('indexer.embeddings.SentenceTransformer', return_value=mock_model) as mock_st:
            client = EmbeddingClient(config)
            await client.embed("one")
            await client.embed("two")
        assert mock_st.call_count == 1

    @pytest.mark.asyncio
    async def test_wrong_dimension(self, config, mock_model):
        mock_model.encode.return_value = np.array([[0.1, 0.2]])
        with patch('indexer.embeddings.SentenceTransformer', return_value=mock_model):
            client = EmbeddingClient(config)
            with pytest.raises(DimensionMismatch):
                await client.embed("shoe")

    @pytest.mark.asyncio
    async def test_model_failure(self, config, mock_model):
        mock_model.encode.side_effect = RuntimeError("CUDA out of memory")
        with patch('indexer.embeddings.SentenceTransformer', return_value=mock_model):
            client = EmbeddingClient(config)
            with pytest.raises(EmbeddingServiceError):
                await client.embed("shoe")

    @pytest.mark.asyncio
    async def test_empty_batch(self, config):
        client = EmbeddingClient(config)
        assert await client.embed_batch([]) == []


class TestOpenAIProvider:
    """EmbeddingClient with a mocked OpenAI SDK client."""

    @pytest.fixture
    def config(self):
        return EmbeddingConfig(api_key="test-key", dimension=3, timeout=0.5)

    def _sdk_client(self, vectors):
        sdk = Mock()
        sdk.embeddings.create = AsyncMock(
            return_value=Mock(data=[Mock(embedding=v) for v in vectors])
        )
        return sdk

    @pytest.mark.asyncio
    async def test_embed_batch(self, config):
        sdk = self._sdk_client([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        with patch('indexer.embeddings.openai.AsyncOpenAI', return_value=sdk):
            client = EmbeddingClient(config)
            vectors = await client.embed_batch(["shoe", "bag"])

        assert len(vectors) == 2
        assert vectors[0].dtype == np.float32
        call = sdk.embeddings.create.call_args
        assert call.kwargs['model'] == "text-embedding-3-small"
        assert call.kwargs['input'] == ["shoe", "bag"]

    @pytest.mark.asyncio
    async def test_api_error(self, config):
        sdk = Mock()
        sdk.embeddings.create = AsyncMock(side_effect=ConnectionError("unreachable"))
        with patch('indexer.embeddings.openai.AsyncOpenAI', return_value=sdk):
            client = EmbeddingClient(config)
            with pytest.raises(EmbeddingServiceError):
                await client.embed("shoe")

    @pytest.mark.asyncio
    async def test_timeout(self, config):
        async def slow_create(**kwargs):
            await asyncio.sleep(5)

        sdk = Mock()
        sdk.embeddings.create = slow_create
        with patch('indexer.embeddings.openai.AsyncOpenAI', return_value=sdk):
            client = EmbeddingClient(config)
            with pytest.raises(EmbeddingServiceError, match="timed out"):
                await client.embed("shoe")
