"""Runtime settings for ruling ingestion and retrieval.

Every behavior switch is an explicit field here and is handed to the
crawler and relevance engine at construction time. Nothing downstream reads
the environment directly.
"""

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from indexer.models import RULINGS_BASE_URL

from .database import DatabaseConfig

DEFAULT_USER_AGENT = "RulingCorpus/1.0 (Classification Research)"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class CrawlerConfig(BaseModel):
    """Ingestion pacing, retry and embedding behavior."""
    base_url: str = Field(default=RULINGS_BASE_URL,
                          description="Ruling URL template")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="HTTP User-Agent header")
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")

    max_retries: int = Field(default=3, ge=0, description="Retries after the first failed attempt")
    retry_delay: float = Field(default=2.0, ge=0, description="Base retry delay in seconds")
    max_retry_delay: float = Field(default=30.0, ge=0, description="Retry delay ceiling in seconds")

    request_delay: float = Field(default=0.5, ge=0, description="Pause after each fetched ruling")
    batch_size: int = Field(default=1, ge=1, description="Rulings fetched concurrently per group")
    batch_delay: float = Field(default=2.0, ge=0, description="Pause between concurrent groups")
    max_concurrent: int = Field(default=10, ge=1, description="Concurrent HTTP request ceiling")

    report_every: int = Field(default=100, ge=1, description="Log progress every N rulings")
    embed_records: bool = Field(default=True, description="Compute embeddings during ingestion")
    embed_retries: int = Field(default=3, ge=0, description="Retries for a failed embedding call")
    min_content_length: int = Field(default=100, ge=0, description="Shorter bodies are not rulings")

    @classmethod
    def from_env(cls) -> 'CrawlerConfig':
        return cls(
            base_url=os.getenv('RULINGS_CRAWL_BASE_URL', RULINGS_BASE_URL),
            user_agent=os.getenv('RULINGS_CRAWL_USER_AGENT', DEFAULT_USER_AGENT),
            request_timeout=float(os.getenv('RULINGS_CRAWL_TIMEOUT', '30')),
            max_retries=int(os.getenv('RULINGS_CRAWL_MAX_RETRIES', '3')),
            retry_delay=float(os.getenv('RULINGS_CRAWL_RETRY_DELAY', '2.0')),
            request_delay=float(os.getenv('RULINGS_CRAWL_DELAY', '0.5')),
            batch_size=int(os.getenv('RULINGS_CRAWL_BATCH_SIZE', '1')),
            batch_delay=float(os.getenv('RULINGS_CRAWL_BATCH_DELAY', '2.0')),
            embed_records=_env_bool('RULINGS_CRAWL_EMBED', True),
        )


class EmbeddingProvider(str, Enum):
    """Supported embedding backends."""
    OPENAI = "openai"
    LOCAL = "local"


class EmbeddingConfig(BaseModel):
    """Embedding backend selection."""
    provider: EmbeddingProvider = Field(default=EmbeddingProvider.OPENAI, description="Embedding backend")
    model: str = Field(default="text-embedding-3-small", description="Embedding model name")
    dimension: int = Field(default=1536, gt=0, description="Vector length produced by the model")
    api_key: Optional[str] = Field(default=None, description="API key for the openai provider")
    timeout: float = Field(default=30.0, gt=0, description="Per-call timeout in seconds")
    max_input_chars: int = Field(default=8000, gt=0, description="Inputs are truncated to this length")

    @classmethod
    def from_env(cls) -> 'EmbeddingConfig':
        provider = EmbeddingProvider(os.getenv('RULINGS_EMBEDDING_PROVIDER', 'openai').lower())

        if provider == EmbeddingProvider.LOCAL:
            return cls(
                provider=provider,
                model=os.getenv('RULINGS_EMBEDDING_MODEL', 'all-MiniLM-L6-v2'),
                dimension=int(os.getenv('RULINGS_EMBEDDING_DIMENSION', '384')),
                timeout=float(os.getenv('RULINGS_EMBEDDING_TIMEOUT', '30')),
            )

        return cls(
            provider=provider,
            model=os.getenv('RULINGS_EMBEDDING_MODEL', 'text-embedding-3-small'),
            dimension=int(os.getenv('RULINGS_EMBEDDING_DIMENSION', '1536')),
            api_key=os.getenv('OPENAI_API_KEY'),
            timeout=float(os.getenv('RULINGS_EMBEDDING_TIMEOUT', '30')),
        )


class RelevanceConfig(BaseModel):
    """Ranking behavior for free-text queries."""
    semantic_enabled: bool = Field(default=True, description="Run vector search alongside lexical scoring")
    semantic_threshold: float = Field(default=0.5, ge=-1.0, le=1.0, description="Minimum cosine similarity")
    semantic_limit: int = Field(default=20, ge=1, description="Vector search result cap")
    semantic_timeout: float = Field(default=5.0, gt=0, description="Query embedding timeout in seconds")
    candidate_page_size: int = Field(default=1000, ge=1, description="Rulings read per page while lexical scoring scans the corpus")
    category_boost: float = Field(default=1.5, gt=0, description="Multiplier for same-category rulings")
    min_partial_length: int = Field(default=4, ge=1, description="Shortest term allowed in a partial match")

    @classmethod
    def from_env(cls) -> 'RelevanceConfig':
        return cls(
            semantic_enabled=_env_bool('RULINGS_SEMANTIC_ENABLED', True),
            semantic_threshold=float(os.getenv('RULINGS_SEMANTIC_THRESHOLD', '0.5')),
            semantic_limit=int(os.getenv('RULINGS_SEMANTIC_LIMIT', '20')),
            semantic_timeout=float(os.getenv('RULINGS_SEMANTIC_TIMEOUT', '5.0')),
            candidate_page_size=int(os.getenv('RULINGS_CANDIDATE_PAGE_SIZE', '1000')),
        )


class Settings(BaseModel):
    """All settings for one process."""
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    relevance: RelevanceConfig = Field(default_factory=RelevanceConfig)
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            database=DatabaseConfig.from_env(),
            crawler=CrawlerConfig.from_env(),
            embedding=EmbeddingConfig.from_env(),
            relevance=RelevanceConfig.from_env(),
            log_level=os.getenv('RULINGS_LOG_LEVEL', 'INFO'),
            log_json=_env_bool('RULINGS_LOG_JSON', False),
        )
