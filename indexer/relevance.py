"""Hybrid relevance ranking for ruling queries.

Two independent strategies feed one ranking: lexical keyword overlap over
the stored corpus, and vector similarity through the store's vector search.
The semantic side is an enhancement. When it is disabled or fails, the
ranking is exactly the lexical one.
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from config.database import open_store
from config.settings import RelevanceConfig, Settings
from observability.logging import setup_logging
from observability.metrics import (
    degraded_responses,
    embedding_failures,
    record_rank,
    semantic_fallbacks,
)
from .categories import category_labels, detect_category
from .embeddings import EmbeddingClient, prepare_text
from .errors import DimensionMismatch, EmbeddingServiceError, StoreError
from .extractor import merge_terms, normalize_terms
from .models import MatchKind, Query, RankingResponse, RulingRecord, ScoredResult

logger = logging.getLogger(__name__)

EXACT_MATCH_SCORE = 2.0
PARTIAL_MATCH_SCORE = 1.0


def query_terms(text: str) -> List[str]:
    """Distinct query terms, normalized the same way as ruling keywords."""
    return merge_terms(normalize_terms(text))


def comparison_terms(record: RulingRecord) -> List[str]:
    """Terms a query is matched against: keywords, HTS codes and the category."""
    return merge_terms(record.keywords, record.hts_codes, [record.category.lower()])


def lexical_score(terms: Sequence[str], record: RulingRecord,
                  min_partial_length: int = 4) -> float:
    """Score keyword overlap between query terms and a ruling.

    Each term earns 2 for an exact match or 1 when it and a ruling term
    contain one another, then the sum is divided by the number of terms.
    A partial match only counts when the shorter term has at least
    ``min_partial_length`` characters.
    """
    if not terms:
        return 0.0

    candidates = comparison_terms(record)
    exact = set(candidates)
    total = 0.0

    for term in terms:
        if term in exact:
            total += EXACT_MATCH_SCORE
            continue
        for candidate in candidates:
            if min(len(term), len(candidate)) < min_partial_length:
                continue
            if term in candidate or candidate in term:
                total += PARTIAL_MATCH_SCORE
                break

    return total / len(terms)


def apply_category_boost(score: float, record_category: str, query_category: str,
                         boost: float = 1.5) -> float:
    """Multiply the score by ``boost`` when the categories match."""
    if record_category == query_category:
        return score * boost
    return score


def merge_results(*groups: Iterable[ScoredResult]) -> List[ScoredResult]:
    """Keep one result per ruling id, the one with the higher score."""
    best: Dict[str, ScoredResult] = {}
    for group in groups:
        for result in group:
            current = best.get(result.id)
            if current is None or result.score > current.score:
                best[result.id] = result
    return list(best.values())


def select_top(results: Iterable[ScoredResult], limit: int) -> List[ScoredResult]:
    """Drop non-positive scores, order by score then id, cut to ``limit``."""
    positive = [result for result in results if result.score > 0]
    positive.sort(key=lambda result: (-result.score, result.id))
    return positive[:limit]


class LexicalStrategy:
    """Keyword overlap scoring with the category boost."""

    name = "lexical"

    def __init__(self, category_boost: float = 1.5, min_partial_length: int = 4):
        self.category_boost = category_boost
        self.min_partial_length = min_partial_length

    def score(self, text: str, category: str,
              records: Iterable[RulingRecord]) -> List[ScoredResult]:
        terms = query_terms(text)
        results = []
        for record in records:
            raw = lexical_score(terms, record, self.min_partial_length)
            boosted = apply_category_boost(raw, record.category, category, self.category_boost)
            results.append(ScoredResult(record=record, score=boosted, match_kind=MatchKind.LEXICAL))
        return results


class SemanticStrategy:
    """Vector similarity through the store. Never raises; failures yield nothing."""

    name = "semantic"

    def __init__(self, store, embedding_client: EmbeddingClient, config: RelevanceConfig):
        self.store = store
        self.embedding_client = embedding_client
        self.config = config

    async def search(self, text: str) -> List[ScoredResult]:
        if not text.strip():
            return []

        try:
            vector = await asyncio.wait_for(
                self.embedding_client.embed(prepare_text(product_description=text)),
                timeout=self.config.semantic_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Query embedding timed out after {self.config.semantic_timeout}s")
            semantic_fallbacks.labels(reason="timeout").inc()
            return []
        except (EmbeddingServiceError, DimensionMismatch) as e:
            logger.warning(f"Query embedding failed, using lexical ranking only: {e}")
            embedding_failures.labels(stage="query").inc()
            semantic_fallbacks.labels(reason="embedding").inc()
            return []

        try:
            matches = await self.store.vector_search(
                vector,
                threshold=self.config.semantic_threshold,
                limit=self.config.semantic_limit
            )
        except (StoreError, DimensionMismatch) as e:
            logger.warning(f"Vector search unavailable, using lexical ranking only: {e}")
            semantic_fallbacks.labels(reason="vector_search").inc()
            return []

        return [
            ScoredResult(record=record, score=float(similarity), match_kind=MatchKind.SEMANTIC)
            for record, similarity in matches
        ]


class RelevanceEngine:
    """Ranks stored rulings against a free-text product description."""

    def __init__(self, store, config: Optional[RelevanceConfig] = None,
                 embedding_client: Optional[EmbeddingClient] = None):
        self.store = store
        self.config = config or RelevanceConfig()
        self.lexical = LexicalStrategy(self.config.category_boost, self.config.min_partial_length)
        self.semantic: Optional[SemanticStrategy] = None
        if self.config.semantic_enabled and embedding_client is not None:
            self.semantic = SemanticStrategy(store, embedding_client, self.config)

    def _degraded(self, category: str, reason: str) -> RankingResponse:
        degraded_responses.labels(reason=reason).inc()
        return RankingResponse(results=[], category=category, total=0, matches=0, degraded=True)

    async def _score_corpus(self, text: str, category: str) -> Tuple[List[ScoredResult], int]:
        """Lexically score every stored ruling, one id-ordered page at a time.

        Only positive scores are kept between pages.
        """
        page_size = self.config.candidate_page_size
        scored: List[ScoredResult] = []
        scanned = 0
        after = None
        while True:
            page = await self.store.list_all(limit=page_size, after=after)
            if not page:
                break
            scanned += len(page)
            scored.extend(r for r in self.lexical.score(text, category, page) if r.score > 0)
            if len(page) < page_size:
                break
            after = page[-1].id
        return scored, scanned

    async def rank(self, query: Union[str, Query], limit: int = 10) -> RankingResponse:
        """Return at most ``limit`` rulings, best first, all with a positive score.

        An empty or unreachable store yields an empty response flagged
        ``degraded`` instead of an exception.
        """
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        if isinstance(query, str):
            query = Query(text=query)

        start_time = time.perf_counter()
        category = query.category or detect_category(query.text)

        try:
            total = await self.store.count()
            if total == 0:
                logger.warning("Ruling store is empty")
                return self._degraded(category, "empty_corpus")
            lexical, scanned = await self._score_corpus(query.text, category)
        except StoreError as e:
            logger.error(f"Ruling store unavailable: {e}")
            return self._degraded(category, "store_error")

        semantic = await self.semantic.search(query.text) if self.semantic else []

        merged = merge_results(lexical, semantic)
        matches = sum(1 for result in merged if result.score > 0)
        results = select_top(merged, limit)

        strategy = "hybrid" if semantic else "lexical"
        record_rank(strategy, time.perf_counter() - start_time)
        logger.debug(f"Ranked {scanned} rulings for category {category}: "
                     f"{matches} matches, strategy {strategy}")

        return RankingResponse(results=results, category=category, total=total, matches=matches)


async def search_rulings(settings: Settings, query: Query, limit: int = 10) -> RankingResponse:
    """Open the configured store and rank one query."""
    try:
        store = await open_store(settings.database)
    except StoreError as e:
        logger.error(f"Could not open ruling store: {e}")
        category = query.category or detect_category(query.text)
        return RankingResponse(results=[], category=category, total=0, matches=0, degraded=True)

    try:
        client = EmbeddingClient(settings.embedding) if settings.relevance.semantic_enabled else None
        engine = RelevanceEngine(store, settings.relevance, client)
        return await engine.rank(query, limit=limit)
    finally:
        await store.close()


def _format_response(response: RankingResponse) -> str:
    lines = [f"Category: {response.category} | {response.matches} matches in {response.total} rulings"]
    if response.degraded:
        lines.append("Ruling store unavailable or empty")
    for position, record in enumerate(response.rulings, 1):
        codes = ", ".join(record.hts_codes)
        lines.append(f"{position:2d}. {record.id} [{record.category}] {codes}")
        if record.product_description:
            lines.append(f"    {record.product_description[:120]}")
    return "\n".join(lines)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for ranking rulings against a product description."""
    parser = argparse.ArgumentParser(description="Find rulings relevant to a product description")
    parser.add_argument("description", help="Free-text product description")
    parser.add_argument("--limit", type=int, default=10, help="Maximum rulings to return")
    parser.add_argument("--category", choices=category_labels(), help="Override the detected product category")
    parser.add_argument("--lexical-only", action="store_true", help="Skip vector search")
    parser.add_argument("--db", help="SQLite database path")
    parser.add_argument("--json", action="store_true", help="Print the response as JSON")
    parser.add_argument("--log-level", default=None, help="Log level")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    setup_logging(level=args.log_level or settings.log_level, service_name="rulings-search",
                  use_json=settings.log_json)

    update = {}
    if args.lexical_only:
        update['relevance'] = settings.relevance.model_copy(update={'semantic_enabled': False})
    if args.db:
        update['database'] = settings.database.model_copy(update={'sqlite_path': args.db})
    if update:
        settings = settings.model_copy(update=update)

    try:
        response = asyncio.run(search_rulings(settings, Query(args.description, args.category), args.limit))
    except ValueError as e:
        parser.error(str(e))

    if args.json:
        print(json.dumps(response.to_dict(), indent=2))
    else:
        print(_format_response(response))
    return 0


if __name__ == "__main__":
    sys.exit(main())
