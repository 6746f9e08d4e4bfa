"""Pipelines package for the ruling corpus.

Provides ruling crawling (ingestion) and embedding backfill.
"""

from .crawler import RulingCrawler, CrawlOutcome, CrawlStats, IdResult, run_crawl
from .backfill import BackfillStats, backfill_embeddings, run_backfill

__all__ = [
    # Crawler
    'RulingCrawler',
    'CrawlOutcome',
    'CrawlStats',
    'IdResult',
    'run_crawl',

    # Backfill
    'BackfillStats',
    'backfill_embeddings',
    'run_backfill'
]
