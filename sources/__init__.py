"""Crawl source definitions and their loader."""

from .loader import (
    CrawlRange,
    RulingSourceConfig,
    SourceLoader,
    load_source_config
)

__all__ = [
    'CrawlRange',
    'RulingSourceConfig',
    'SourceLoader',
    'load_source_config'
]
