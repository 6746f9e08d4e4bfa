"""Configuration module for the ruling corpus.

Provides settings for the store, crawler, embeddings and relevance ranking.
"""

from .database import (
    DatabaseConfig,
    DatabaseType,
    PostgresConfig,
    create_store,
    open_store
)
from .settings import (
    CrawlerConfig,
    EmbeddingConfig,
    EmbeddingProvider,
    RelevanceConfig,
    Settings
)

__all__ = [
    'DatabaseConfig',
    'DatabaseType',
    'PostgresConfig',
    'create_store',
    'open_store',
    'CrawlerConfig',
    'EmbeddingConfig',
    'EmbeddingProvider',
    'RelevanceConfig',
    'Settings'
]
