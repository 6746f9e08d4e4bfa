"""Observability package for the ruling corpus."""

from .logging import setup_logging, JSONFormatter
from .metrics import (
    rulings_registry,
    record_crawl_outcome,
    record_rank,
    get_metrics_summary,
    export_metrics
)

__all__ = [
    'setup_logging',
    'JSONFormatter',
    'rulings_registry',
    'record_crawl_outcome',
    'record_rank',
    'get_metrics_summary',
    'export_metrics'
]
