"""Embedding backfill for rulings stored without vectors.

Rulings crawled with embeddings disabled, or written before the embedding
provider was configured, are embedded here in batches.
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Optional, Sequence

from config.database import open_store
from config.settings import Settings
from indexer.embeddings import EmbeddingClient, prepare_text
from indexer.errors import DimensionMismatch, EmbeddingServiceError, StoreError
from observability.logging import setup_logging
from observability.metrics import embedding_failures

logger = logging.getLogger(__name__)


@dataclass
class BackfillStats:
    """Counts for one backfill run."""
    scanned: int = 0
    embedded: int = 0
    failed: int = 0
    failed_batches: int = 0


async def backfill_embeddings(store, client: EmbeddingClient, batch_size: int = 32,
                              max_records: Optional[int] = None) -> BackfillStats:
    """Embed every stored ruling that has no vector.

    A batch that fails to embed or store is counted and skipped; its
    rulings stay without a vector and are picked up by the next run.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    stats = BackfillStats()
    limit = max_records
    # Failed ids stay missing, so page past them instead of re-reading them
    skip = set()

    while limit is None or stats.scanned < limit:
        fetch = batch_size + len(skip)
        records = [r for r in await store.list_missing_embeddings(limit=fetch) if r.id not in skip]
        if not records:
            break
        if limit is not None:
            records = records[:limit - stats.scanned]
        records = records[:batch_size]
        stats.scanned += len(records)

        texts = [prepare_text(r.product_description, r.classification, r.rationale) for r in records]
        written = 0
        try:
            vectors = await client.embed_batch(texts)
            for record, vector in zip(records, vectors):
                await store.update_embedding(record.id, vector, client.model_name)
                written += 1
        except (EmbeddingServiceError, DimensionMismatch, StoreError) as e:
            logger.error(f"Backfill batch starting at {records[0].id} failed after {written} writes: {e}")
            embedding_failures.labels(stage="backfill").inc()
            stats.embedded += written
            stats.failed += len(records) - written
            stats.failed_batches += 1
            # Rulings written before the failure are no longer missing
            skip.update(r.id for r in records[written:])
            continue

        stats.embedded += len(records)
        logger.info(f"Backfilled {stats.embedded} embeddings (last {records[-1].id})")

    logger.info(f"Backfill finished: {stats.embedded} embedded, {stats.failed} failed "
                f"in {stats.failed_batches} batches")
    return stats


async def run_backfill(settings: Settings, batch_size: int = 32,
                       max_records: Optional[int] = None) -> BackfillStats:
    store = await open_store(settings.database)
    try:
        return await backfill_embeddings(store, EmbeddingClient(settings.embedding),
                                         batch_size=batch_size, max_records=max_records)
    finally:
        await store.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Embed stored rulings that have no vector")
    parser.add_argument("--batch-size", type=int, default=32, help="Rulings per embedding call")
    parser.add_argument("--max-records", type=int, help="Stop after this many rulings")
    parser.add_argument("--db", help="SQLite database path")
    parser.add_argument("--log-level", default=None, help="Log level")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    setup_logging(level=args.log_level or settings.log_level, service_name="rulings-backfill",
                  use_json=settings.log_json)
    if args.db:
        settings = settings.model_copy(
            update={'database': settings.database.model_copy(update={'sqlite_path': args.db})}
        )

    try:
        stats = asyncio.run(run_backfill(settings, args.batch_size, args.max_records))
    except StoreError as e:
        logger.error(f"Store unavailable: {e}")
        return 1

    print(f"embedded {stats.embedded} | failed {stats.failed}")
    return 0 if stats.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
