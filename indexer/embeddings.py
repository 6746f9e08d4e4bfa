# Ruling embeddings
# Adapts the OpenAI embeddings API or a local sentence-transformers model
# to fixed-length numpy vectors.

import asyncio
import logging
from typing import List, Optional

import numpy as np
import openai
from sentence_transformers import SentenceTransformer

from config.settings import EmbeddingConfig, EmbeddingProvider
from .errors import DimensionMismatch, EmbeddingServiceError

logger = logging.getLogger(__name__)

MAX_RATIONALE_CHARS = 2000


def prepare_text(product_description: Optional[str] = None,
                 classification: Optional[str] = None,
                 rationale: Optional[str] = None) -> str:
    """Combine ruling fields into one labelled embedding input.

    Ingestion and query time both go through here so the two sides of a
    similarity comparison are built the same way.
    """
    parts = []

    if product_description:
        parts.append(f"Product: {product_description}")

    if classification:
        parts.append(f"Classification: {classification}")

    if rationale:
        parts.append(f"Rationale: {rationale[:MAX_RATIONALE_CHARS]}")

    return "\n\n".join(parts)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Calculate cosine similarity between two vectors"""
    a = np.asarray(a, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32)
    if a.shape != b.shape:
        raise DimensionMismatch(f"Cannot compare vectors of length {a.size} and {b.size}")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    # float32 rounding can land a hair outside [-1, 1]
    return max(-1.0, min(1.0, similarity))


def serialize_embedding(embedding: np.ndarray) -> bytes:
    """Serialize embedding for database storage"""
    return np.asarray(embedding, dtype=np.float32).tobytes()


def deserialize_embedding(data: bytes) -> np.ndarray:
    """Deserialize embedding from database"""
    return np.frombuffer(data, dtype=np.float32).copy()


class EmbeddingClient:
    """Turns text into vectors using the configured provider.

    Failures of any kind, including timeouts, surface as
    ``EmbeddingServiceError``. Retrying is left to the caller.
    """

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.config = config or EmbeddingConfig()
        self._openai_client = None
        self._local_model: Optional[SentenceTransformer] = None

    @property
    def model_name(self) -> str:
        return self.config.model

    @property
    def dimension(self) -> int:
        return self.config.dimension

    def _truncate(self, text: str) -> str:
        return (text or "")[:self.config.max_input_chars]

    def _get_openai_client(self):
        if self._openai_client is None:
            # Retries are driven by the crawler, not the SDK
            self._openai_client = openai.AsyncOpenAI(
                api_key=self.config.api_key,
                timeout=self.config.timeout,
                max_retries=0,
            )
        return self._openai_client

    def _get_local_model(self) -> SentenceTransformer:
        if self._local_model is None:
            logger.info(f"Loading embedding model: {self.config.model}")
            self._local_model = SentenceTransformer(self.config.model)
        return self._local_model

    async def _encode_openai(self, texts: List[str]) -> List[List[float]]:
        client = self._get_openai_client()
        response = await client.embeddings.create(
            model=self.config.model,
            input=texts,
            encoding_format="float",
        )
        return [item.embedding for item in response.data]

    async def _encode_local(self, texts: List[str]) -> List[List[float]]:
        model = self._get_local_model()
        embeddings = await asyncio.to_thread(model.encode, texts, convert_to_numpy=True)
        return [row for row in embeddings]

    async def _encode(self, texts: List[str]) -> List[np.ndarray]:
        if self.config.provider == EmbeddingProvider.LOCAL:
            call = self._encode_local(texts)
        else:
            call = self._encode_openai(texts)

        try:
            raw = await asyncio.wait_for(call, timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise EmbeddingServiceError(
                f"Embedding call timed out after {self.config.timeout}s"
            ) from e
        except Exception as e:
            logger.warning(f"Embedding provider {self.config.provider.value} failed: {e}")
            raise EmbeddingServiceError(f"Failed to create embedding: {e}") from e

        if len(raw) != len(texts):
            raise EmbeddingServiceError(f"Expected {len(texts)} embeddings, got {len(raw)}")

        vectors = [np.asarray(vector, dtype=np.float32) for vector in raw]
        for vector in vectors:
            if vector.size != self.config.dimension:
                raise DimensionMismatch(
                    f"Model {self.config.model} returned {vector.size} dimensions, "
                    f"expected {self.config.dimension}"
                )
        return vectors

    async def embed(self, text: str) -> np.ndarray:
        """Embed a single text."""
        vectors = await self._encode([self._truncate(text)])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        """Embed several texts in one call. The batch fails as a whole."""
        if not texts:
            return []
        return await self._encode([self._truncate(text) for text in texts])
