"""PostgreSQL ruling store.

Production backend using an asyncpg pool and a pgvector column for
cosine-distance search.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import asyncpg
import numpy as np
from pgvector.asyncpg import register_vector

from config.database import PostgresConfig
from .errors import StoreError
from .models import RulingRecord

logger = logging.getLogger(__name__)

# Server-side errors, closed pools and unreachable hosts all surface as StoreError
DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

COLUMNS = (
    "id, ruling_type, url, ruling_date, hts_codes, product_description, "
    "classification, rationale, keywords, category, embedding, embedding_model, "
    "ingested_at, last_seen_at"
)


class PostgresAdapter:
    """PostgreSQL ruling store with pgvector support."""

    def __init__(self, config: PostgresConfig):
        self.config = config
        self.pool: Optional[asyncpg.Pool] = None

    def _connect_kwargs(self) -> Dict[str, Any]:
        return {
            'host': self.config.host,
            'port': self.config.port,
            'database': self.config.database,
            'user': self.config.user,
            'password': self.config.password,
            'command_timeout': self.config.command_timeout,
        }

    async def initialize(self):
        """Ensure the extension and schema exist, then open the pool."""
        try:
            # The vector type must exist before pooled connections register its codec
            conn = await asyncpg.connect(**self._connect_kwargs())
            try:
                await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
                await conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS rulings (
                        id TEXT PRIMARY KEY,
                        ruling_type TEXT NOT NULL,
                        url TEXT NOT NULL,
                        ruling_date DATE,
                        hts_codes TEXT[] NOT NULL DEFAULT '{{}}',
                        product_description TEXT NOT NULL DEFAULT '',
                        classification TEXT NOT NULL DEFAULT '',
                        rationale TEXT NOT NULL DEFAULT '',
                        keywords TEXT[] NOT NULL DEFAULT '{{}}',
                        category TEXT NOT NULL DEFAULT 'General',
                        embedding vector({int(self.config.embedding_dimension)}),
                        embedding_model TEXT,
                        ingested_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        last_seen_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    )
                    """
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_rulings_category ON rulings (category)"
                )
            finally:
                await conn.close()
            logger.info("pgvector extension and ruling schema ensured")

            self.pool = await asyncpg.create_pool(
                min_size=self.config.min_connections,
                max_size=self.config.max_connections,
                init=register_vector,
                **self._connect_kwargs()
            )
            logger.info("PostgreSQL connection pool initialized")

        except DB_ERRORS as e:
            logger.error(f"Failed to initialize PostgreSQL: {e}")
            raise StoreError(f"Failed to initialize PostgreSQL store: {e}") from e

    async def close(self):
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL connection pool closed")

    def _pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StoreError("PostgreSQL store not initialized. Call initialize() first.")
        return self.pool

    def _row_to_record(self, row) -> RulingRecord:
        embedding = row['embedding']
        return RulingRecord(
            id=row['id'],
            source_url=row['url'],
            issue_date=row['ruling_date'],
            hts_codes=list(row['hts_codes'] or []),
            product_description=row['product_description'],
            classification=row['classification'],
            rationale=row['rationale'],
            keywords=list(row['keywords'] or []),
            category=row['category'],
            embedding=np.asarray(embedding, dtype=np.float32) if embedding is not None else None,
            embedding_model=row['embedding_model'],
            ingested_at=row['ingested_at'],
            last_seen_at=row['last_seen_at'],
        )

    async def upsert(self, record: RulingRecord) -> None:
        """Insert or update a ruling keyed by id."""
        embedding = record.embedding if record.has_embedding else None
        try:
            async with self._pool().acquire() as conn:
                await conn.execute(
                    f"""
                    INSERT INTO rulings ({COLUMNS})
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
                    ON CONFLICT (id) DO UPDATE SET
                        ruling_type = EXCLUDED.ruling_type,
                        url = EXCLUDED.url,
                        ruling_date = EXCLUDED.ruling_date,
                        hts_codes = EXCLUDED.hts_codes,
                        product_description = EXCLUDED.product_description,
                        classification = EXCLUDED.classification,
                        rationale = EXCLUDED.rationale,
                        keywords = EXCLUDED.keywords,
                        category = EXCLUDED.category,
                        embedding = EXCLUDED.embedding,
                        embedding_model = EXCLUDED.embedding_model,
                        last_seen_at = EXCLUDED.last_seen_at
                    """,
                    record.id, record.kind.value, record.source_url, record.issue_date,
                    record.hts_codes, record.product_description, record.classification,
                    record.rationale, record.keywords, record.category, embedding,
                    record.embedding_model if embedding is not None else None,
                    record.ingested_at, record.last_seen_at
                )
        except DB_ERRORS as e:
            raise StoreError(f"Failed to upsert ruling {record.id}: {e}") from e

    async def get_by_id(self, ruling_id: str) -> Optional[RulingRecord]:
        try:
            async with self._pool().acquire() as conn:
                row = await conn.fetchrow(f"SELECT {COLUMNS} FROM rulings WHERE id = $1", ruling_id)
        except DB_ERRORS as e:
            raise StoreError(f"Failed to read ruling {ruling_id}: {e}") from e
        return self._row_to_record(row) if row else None

    async def exists(self, ruling_id: str) -> bool:
        try:
            async with self._pool().acquire() as conn:
                found = await conn.fetchval("SELECT 1 FROM rulings WHERE id = $1", ruling_id)
        except DB_ERRORS as e:
            raise StoreError(f"Failed to check ruling {ruling_id}: {e}") from e
        return found is not None

    async def vector_search(self, query_vector: np.ndarray, threshold: float = 0.5,
                            limit: int = 10) -> List[Tuple[RulingRecord, float]]:
        """Perform semantic search using pgvector cosine distance."""
        try:
            async with self._pool().acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {COLUMNS}, 1 - (embedding <=> $1) AS similarity
                    FROM rulings
                    WHERE embedding IS NOT NULL
                      AND 1 - (embedding <=> $1) >= $2
                    ORDER BY embedding <=> $1, id
                    LIMIT $3
                    """,
                    np.asarray(query_vector, dtype=np.float32), threshold, limit
                )
        except DB_ERRORS as e:
            raise StoreError(f"Vector search failed: {e}") from e
        return [(self._row_to_record(row), float(row['similarity'])) for row in rows]

    async def list_all(self, limit: int = 1000, after: Optional[str] = None) -> List[RulingRecord]:
        """List rulings in id order, starting after the ``after`` id when given."""
        try:
            async with self._pool().acquire() as conn:
                rows = await conn.fetch(
                    f"SELECT {COLUMNS} FROM rulings WHERE id > $1 ORDER BY id LIMIT $2",
                    after or "", limit
                )
        except DB_ERRORS as e:
            raise StoreError(f"Failed to list rulings: {e}") from e
        return [self._row_to_record(row) for row in rows]

    async def count(self) -> int:
        try:
            async with self._pool().acquire() as conn:
                return await conn.fetchval("SELECT COUNT(*) FROM rulings")
        except DB_ERRORS as e:
            raise StoreError(f"Failed to count rulings: {e}") from e

    async def list_missing_embeddings(self, limit: int = 100) -> List[RulingRecord]:
        try:
            async with self._pool().acquire() as conn:
                rows = await conn.fetch(
                    f"SELECT {COLUMNS} FROM rulings WHERE embedding IS NULL ORDER BY id LIMIT $1",
                    limit
                )
        except DB_ERRORS as e:
            raise StoreError(f"Failed to list rulings without embeddings: {e}") from e
        return [self._row_to_record(row) for row in rows]

    async def update_embedding(self, ruling_id: str, embedding: np.ndarray, model: str) -> None:
        try:
            async with self._pool().acquire() as conn:
                await conn.execute(
                    "UPDATE rulings SET embedding = $1, embedding_model = $2 WHERE id = $3",
                    np.asarray(embedding, dtype=np.float32), model, ruling_id
                )
        except DB_ERRORS as e:
            raise StoreError(f"Failed to update embedding for {ruling_id}: {e}") from e

    async def get_stats(self) -> Dict[str, Any]:
        """Get corpus statistics for monitoring."""
        try:
            async with self._pool().acquire() as conn:
                rows = await conn.fetch("SELECT ruling_type, COUNT(*) AS n FROM rulings GROUP BY ruling_type")
                embedded = await conn.fetchval("SELECT COUNT(*) FROM rulings WHERE embedding IS NOT NULL")
        except DB_ERRORS as e:
            raise StoreError(f"Failed to read store stats: {e}") from e

        by_type = {row['ruling_type']: row['n'] for row in rows}
        return {
            'ruling_count': sum(by_type.values()),
            'rulings_by_type': by_type,
            'embedded_ruling_count': embedded,
        }
