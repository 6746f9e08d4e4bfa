"""Prometheus metrics for ruling ingestion and retrieval."""

import logging
from typing import Any, Dict

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Dedicated registry so tests and embedding processes don't collide with the default one
rulings_registry = CollectorRegistry()

# Ingestion metrics
crawl_outcomes = Counter(
    'rulings_crawl_outcomes_total',
    'Crawled ruling IDs by outcome',
    ['kind', 'outcome'],
    registry=rulings_registry
)

fetch_retries = Counter(
    'rulings_fetch_retries_total',
    'Retried ruling page fetches',
    ['reason'],
    registry=rulings_registry
)

embedding_failures = Counter(
    'rulings_embedding_failures_total',
    'Embedding calls that failed',
    ['stage'],
    registry=rulings_registry
)

fetch_duration = Histogram(
    'rulings_fetch_duration_seconds',
    'Ruling page fetch duration in seconds, retries included',
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=rulings_registry
)

# Retrieval metrics
rank_requests = Counter(
    'rulings_rank_requests_total',
    'Ranking requests by strategy actually used',
    ['strategy'],
    registry=rulings_registry
)

rank_duration = Histogram(
    'rulings_rank_duration_seconds',
    'Ranking request duration in seconds',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=rulings_registry
)

semantic_fallbacks = Counter(
    'rulings_semantic_fallbacks_total',
    'Ranking requests where vector search contributed nothing because it failed',
    ['reason'],
    registry=rulings_registry
)

degraded_responses = Counter(
    'rulings_degraded_responses_total',
    'Ranking requests answered with an empty degraded result',
    ['reason'],
    registry=rulings_registry
)


def record_crawl_outcome(kind: str, outcome: str) -> None:
    crawl_outcomes.labels(kind=kind, outcome=outcome).inc()


def record_rank(strategy: str, duration: float) -> None:
    rank_requests.labels(strategy=strategy).inc()
    rank_duration.observe(duration)


def get_metrics_summary() -> Dict[str, Any]:
    """Flatten current counter values for log output."""
    summary: Dict[str, Any] = {}
    for metric in rulings_registry.collect():
        if metric.type != 'counter':
            continue
        for sample in metric.samples:
            if sample.name.endswith('_total'):
                labels = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
                key = f"{sample.name}{{{labels}}}" if labels else sample.name
                summary[key] = sample.value
    return summary


def export_metrics() -> bytes:
    """Prometheus text exposition of the ruling registry."""
    return generate_latest(rulings_registry)
