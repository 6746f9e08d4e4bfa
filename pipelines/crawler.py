"""Ruling crawler pipeline.

Walks numeric ruling ID ranges, fetches each ruling page, extracts its
fields, embeds it and upserts it into the store. Safe to stop and restart
at any point: an ID already in the store is skipped before any request is
made, so re-running a finished range does no network work.
"""

import argparse
import asyncio
import logging
import random
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence

import aiohttp
import numpy as np

from config.database import open_store
from config.settings import CrawlerConfig, EmbeddingProvider, Settings
from indexer.categories import detect_category
from indexer.embeddings import EmbeddingClient, prepare_text
from indexer.errors import (
    ConfigurationError,
    DimensionMismatch,
    EmbeddingServiceError,
    FetchError,
    MalformedDocument,
    StoreError,
    TransientFetchError,
)
from indexer.extractor import extract_ruling_fields
from indexer.models import RulingKind, RulingRecord, ruling_id
from observability.logging import setup_logging
from observability.metrics import (
    embedding_failures,
    export_metrics,
    fetch_duration,
    fetch_retries,
    record_crawl_outcome,
)
from sources.loader import CrawlRange, load_source_config

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429}


class CrawlOutcome(str, Enum):
    STORED = "stored"
    SKIPPED_EXISTING = "skipped_existing"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    ERRORED = "errored"


@dataclass
class IdResult:
    """What happened to one ruling ID."""
    ruling_id: str
    outcome: CrawlOutcome
    fetched: bool = False
    error: Optional[str] = None


@dataclass
class CrawlStats:
    """Statistics for a crawl session."""
    fetched: int = 0
    stored: int = 0
    skipped_existing: int = 0
    not_found: int = 0
    malformed: int = 0
    errored: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = datetime.now(timezone.utc)

    @property
    def processed(self) -> int:
        return self.stored + self.skipped_existing + self.not_found + self.malformed + self.errored

    @property
    def elapsed_seconds(self) -> float:
        end = self.end_time or datetime.now(timezone.utc)
        return max((end - self.start_time).total_seconds(), 0.0)

    def record(self, result: IdResult) -> None:
        if result.fetched:
            self.fetched += 1
        if result.outcome == CrawlOutcome.STORED:
            self.stored += 1
        elif result.outcome == CrawlOutcome.SKIPPED_EXISTING:
            self.skipped_existing += 1
        elif result.outcome == CrawlOutcome.NOT_FOUND:
            self.not_found += 1
        elif result.outcome == CrawlOutcome.MALFORMED:
            self.malformed += 1
        else:
            self.errored += 1

    def finish(self):
        """Mark crawl as finished."""
        self.end_time = datetime.now(timezone.utc)

    def summary(self) -> str:
        return (f"fetched {self.fetched} | stored {self.stored} | "
                f"skipped {self.skipped_existing} | not found {self.not_found} | "
                f"malformed {self.malformed} | errors {self.errored}")


class RulingCrawler:
    """Asynchronous ruling crawler with retries, pacing and resumability."""

    def __init__(self,
                 store,
                 config: Optional[CrawlerConfig] = None,
                 embedding_client: Optional[EmbeddingClient] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize crawler.

        Args:
            store: Ruling store (SQLite or PostgreSQL adapter)
            config: Pacing, retry and embedding settings
            embedding_client: Client used to embed rulings. Without one,
                rulings are stored without vectors for a later backfill.
            session: Pre-built HTTP session; the crawler creates and owns
                one when omitted
        """
        self.store = store
        self.config = config or CrawlerConfig()
        self.embedding_client = embedding_client
        self.session = session
        self._owns_session = session is None
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent)

        if self.config.embed_records and embedding_client is None:
            logger.warning("No embedding client configured; rulings will be stored without embeddings")

    async def __aenter__(self):
        if self.session is None:
            connector = aiohttp.TCPConnector(limit=self.config.max_concurrent * 2)
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
            self.session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={'User-Agent': self.config.user_agent}
            )
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the crawler session if the crawler created it."""
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    @property
    def embeds(self) -> bool:
        return self.config.embed_records and self.embedding_client is not None

    def ruling_url(self, rid: str) -> str:
        return self.config.base_url.format(ruling_id=rid)

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay with jitter."""
        base_delay = self.config.retry_delay * (2 ** attempt)
        jitter = random.uniform(0.1, 0.3) * base_delay
        return min(base_delay + jitter, self.config.max_retry_delay)

    def _is_retryable_error(self, exception: Optional[Exception], status_code: Optional[int] = None) -> bool:
        """Determine if an error is retryable."""
        if status_code is not None:
            return status_code in RETRYABLE_STATUS_CODES or status_code >= 500

        if isinstance(exception, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
            return True

        # Connection trouble is retryable; other client errors are not
        return isinstance(exception, (aiohttp.ClientConnectionError,
                                      aiohttp.ClientPayloadError))

    async def _fetch_ruling(self, url: str) -> Optional[str]:
        """Fetch a ruling page.

        Returns:
            Page body, or None when the ruling does not exist (HTTP 404)

        Raises:
            TransientFetchError: retryable failures outlasted ``max_retries``
            FetchError: a non-retryable failure
        """
        if self.session is None:
            await self.__aenter__()

        start_time = time.monotonic()
        last_error = "unknown error"
        last_status = 0

        try:
            for attempt in range(self.config.max_retries + 1):
                if attempt > 0:
                    delay = self._calculate_retry_delay(attempt - 1)
                    logger.warning(f"Retrying {url} in {delay:.2f}s after {last_error} "
                                   f"(attempt {attempt + 1}/{self.config.max_retries + 1})")
                    await asyncio.sleep(delay)

                try:
                    async with self.semaphore:
                        async with self.session.get(url, allow_redirects=True) as response:
                            if response.status == 404:
                                return None

                            if 200 <= response.status < 300:
                                return await response.text()

                            if not self._is_retryable_error(None, response.status):
                                raise FetchError(f"HTTP {response.status} for {url}", response.status)

                            last_error = f"HTTP {response.status}"
                            last_status = response.status
                            fetch_retries.labels(reason=f"http_{response.status}").inc()

                except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                    if not self._is_retryable_error(e):
                        raise FetchError(f"Client error fetching {url}: {e}") from e
                    last_error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
                    last_status = 408 if isinstance(e, asyncio.TimeoutError) else 0
                    fetch_retries.labels(reason="timeout" if last_status == 408 else "connection").inc()

            raise TransientFetchError(
                f"Giving up on {url} after {self.config.max_retries + 1} attempts: {last_error}",
                last_status
            )
        finally:
            fetch_duration.observe(time.monotonic() - start_time)

    def _build_record(self, rid: str, url: str, html: str) -> RulingRecord:
        """Extract a ruling record from a fetched page.

        Raises:
            MalformedDocument: the page is a stub or names no HTS code
        """
        extracted = extract_ruling_fields(html, self.config.min_content_length)
        if extracted is None:
            raise MalformedDocument(f"{rid}: body shorter than {self.config.min_content_length} characters")
        if not extracted.hts_codes:
            raise MalformedDocument(f"{rid}: no HTS codes found")

        category = detect_category(f"{extracted.product_description} {extracted.classification}")
        return RulingRecord(
            id=rid,
            source_url=url,
            issue_date=extracted.issue_date,
            hts_codes=sorted(extracted.hts_codes),
            product_description=extracted.product_description,
            classification=extracted.classification,
            rationale=extracted.rationale,
            keywords=extracted.keywords,
            category=category,
        )

    async def _embed_with_retry(self, text: str) -> np.ndarray:
        last_error: Optional[EmbeddingServiceError] = None
        for attempt in range(self.config.embed_retries + 1):
            try:
                return await self.embedding_client.embed(text)
            except EmbeddingServiceError as e:
                last_error = e
                embedding_failures.labels(stage="ingest").inc()
                if attempt < self.config.embed_retries:
                    await asyncio.sleep(self._calculate_retry_delay(attempt))
        raise last_error

    async def process_id(self, kind: RulingKind, number: int) -> IdResult:
        """Run one ruling ID through exists-check, fetch, extract, embed and upsert.

        Never raises for per-ruling failures; the outcome says what happened.
        """
        rid = ruling_id(kind, number)

        try:
            if await self.store.exists(rid):
                return IdResult(rid, CrawlOutcome.SKIPPED_EXISTING)
        except StoreError as e:
            logger.error(f"Store check failed for {rid}: {e}")
            return IdResult(rid, CrawlOutcome.ERRORED, error=str(e))

        url = self.ruling_url(rid)
        try:
            html = await self._fetch_ruling(url)
        except FetchError as e:
            logger.warning(f"Failed to fetch {rid}: {e}")
            return IdResult(rid, CrawlOutcome.ERRORED, error=str(e))

        if html is None:
            logger.debug(f"{rid} does not exist")
            return IdResult(rid, CrawlOutcome.NOT_FOUND)

        try:
            record = self._build_record(rid, url, html)
        except MalformedDocument as e:
            logger.debug(f"Skipping {e}")
            return IdResult(rid, CrawlOutcome.MALFORMED, fetched=True, error=str(e))

        if self.embeds:
            text = prepare_text(record.product_description, record.classification, record.rationale)
            try:
                record.embedding = await self._embed_with_retry(text)
                record.embedding_model = self.embedding_client.model_name
            except (EmbeddingServiceError, DimensionMismatch) as e:
                # Not stored, so the next run tries this ruling again
                logger.error(f"Embedding failed for {rid}, leaving it for a later run: {e}")
                return IdResult(rid, CrawlOutcome.ERRORED, fetched=True, error=str(e))

        try:
            await self.store.upsert(record)
        except StoreError as e:
            logger.error(f"Failed to store {rid}: {e}")
            return IdResult(rid, CrawlOutcome.ERRORED, fetched=True, error=str(e))

        logger.info(f"Stored {rid} ({len(record.hts_codes)} HTS codes, {record.category})")
        return IdResult(rid, CrawlOutcome.STORED, fetched=True)

    async def _process_group(self, kind: RulingKind, numbers: Sequence[int]) -> List[IdResult]:
        """Process a group of IDs concurrently; a group of one is sequential mode.

        An exception escaping ``process_id`` becomes an ERRORED result so one
        bad page never ends the crawl.
        """
        raw = await asyncio.gather(*(self.process_id(kind, n) for n in numbers),
                                   return_exceptions=True)
        results = []
        for number, result in zip(numbers, raw):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                rid = ruling_id(kind, number)
                logger.error(f"Unexpected error processing {rid}: {result}")
                result = IdResult(rid, CrawlOutcome.ERRORED, error=str(result))
            results.append(result)
        return results

    def _report_progress(self, crawl_range: CrawlRange, stats: CrawlStats, next_number: int):
        hours = stats.elapsed_seconds / 3600
        rate = stats.stored / hours if hours > 0 else 0.0
        logger.info(f"Progress {crawl_range}: {stats.summary()} | "
                    f"{rate:.0f} rulings/hour | next {ruling_id(crawl_range.kind, next_number)}")

    async def crawl_range(self, crawl_range: CrawlRange,
                          stats: Optional[CrawlStats] = None) -> CrawlStats:
        """Attempt every ID in one range."""
        stats = stats or CrawlStats()
        numbers = crawl_range.numbers()
        batch_size = self.config.batch_size
        pause = self.config.request_delay if batch_size == 1 else self.config.batch_delay

        logger.info(f"Crawling {crawl_range} ({len(crawl_range)} rulings, "
                    f"batch size {batch_size}, pause {pause}s)")

        for offset in range(0, len(numbers), batch_size):
            group = numbers[offset:offset + batch_size]
            results = await self._process_group(crawl_range.kind, group)

            went_to_network = False
            for result in results:
                stats.record(result)
                record_crawl_outcome(crawl_range.kind.name.lower(), result.outcome.value)
                if result.outcome != CrawlOutcome.SKIPPED_EXISTING:
                    went_to_network = True
                if stats.processed % self.config.report_every == 0:
                    self._report_progress(crawl_range, stats, group[-1] + 1)

            # Pacing is for the remote site, so already-stored IDs cost nothing
            if went_to_network and offset + batch_size < len(numbers):
                await asyncio.sleep(pause)

        return stats

    async def crawl(self, ranges: Sequence[CrawlRange]) -> CrawlStats:
        """Crawl every configured range.

        Raises:
            ConfigurationError: if no ranges are given or one is not a CrawlRange
        """
        if not ranges:
            raise ConfigurationError("At least one crawl range is required")
        for crawl_range in ranges:
            if not isinstance(crawl_range, CrawlRange):
                raise ConfigurationError(f"Invalid crawl range: {crawl_range!r}")

        stats = CrawlStats()
        for crawl_range in ranges:
            await self.crawl_range(crawl_range, stats)
        stats.finish()

        logger.info(f"Crawl completed in {stats.elapsed_seconds / 60:.1f} minutes: {stats.summary()}")
        return stats


async def run_crawl(settings: Settings, ranges: Sequence[CrawlRange]) -> CrawlStats:
    """Open the configured store and crawl the given ranges.

    Raises:
        ConfigurationError: if embedding is enabled with OpenAI but no API key is set
    """
    embedding = settings.embedding
    if (settings.crawler.embed_records and embedding.provider == EmbeddingProvider.OPENAI
            and not embedding.api_key):
        raise ConfigurationError("OpenAI embeddings need OPENAI_API_KEY; set it or crawl with --no-embed")

    store = await open_store(settings.database)
    try:
        client = EmbeddingClient(settings.embedding) if settings.crawler.embed_records else None
        async with RulingCrawler(store, settings.crawler, client) as crawler:
            return await crawler.crawl(ranges)
    finally:
        await store.close()


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crawl CBP rulings into the ruling store")
    parser.add_argument("--source", help="Source definition in sources/ (e.g. cbp_rulings)")
    parser.add_argument("--kind", choices=[k.value for k in RulingKind], help="Ruling prefix (N or H)")
    parser.add_argument("--start", type=int, help="First ruling number")
    parser.add_argument("--end", type=int, help="Last ruling number (inclusive)")
    parser.add_argument("--batch-size", type=int, help="Rulings fetched concurrently per group")
    parser.add_argument("--delay", type=float, help="Pause between requests (or groups) in seconds")
    parser.add_argument("--no-embed", action="store_true", help="Store rulings without embeddings")
    parser.add_argument("--db", help="SQLite database path")
    parser.add_argument("--log-level", default=None, help="Log level")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--metrics-out", help="Write Prometheus metrics here when done")
    return parser.parse_args(argv)


def _resolve(args: argparse.Namespace, settings: Settings):
    overrides = {}
    ranges: List[CrawlRange] = []

    if args.source:
        source = load_source_config(args.source)
        overrides.update(source.crawler_overrides)
        ranges.extend(source.ranges)

    if args.kind is not None or args.start is not None or args.end is not None:
        if args.kind is None or args.start is None or args.end is None:
            raise ConfigurationError("--kind, --start and --end must be given together")
        ranges.append(CrawlRange(RulingKind(args.kind), args.start, args.end))

    if not ranges:
        raise ConfigurationError("Give --source or --kind/--start/--end")

    if args.batch_size is not None:
        overrides['batch_size'] = args.batch_size
    if args.delay is not None:
        key = 'batch_delay' if overrides.get('batch_size', settings.crawler.batch_size) > 1 else 'request_delay'
        overrides[key] = args.delay
    if args.no_embed:
        overrides['embed_records'] = False

    crawler = CrawlerConfig.model_validate({**settings.crawler.model_dump(), **overrides})
    update = {'crawler': crawler}
    if args.db:
        update['database'] = settings.database.model_copy(update={'sqlite_path': args.db})
    return settings.model_copy(update=update), ranges


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for ruling ingestion."""
    args = _parse_args(argv)
    settings = Settings.from_env()
    setup_logging(level=args.log_level or settings.log_level,
                  service_name="rulings-crawler",
                  use_json=args.log_json or settings.log_json)

    try:
        settings, ranges = _resolve(args, settings)
        stats = asyncio.run(run_crawl(settings, ranges))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except StoreError as e:
        logger.error(f"Store unavailable: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Crawl interrupted; re-run the same ranges to resume")
        return 130

    if args.metrics_out:
        with open(args.metrics_out, 'wb') as f:
            f.write(export_metrics())

    print(stats.summary())
    return 0


if __name__ == "__main__":
    sys.exit(main())
