"""SQLite ruling store.

Development backend. Embeddings are stored as float32 BLOBs and vector
search is a full cosine scan in numpy.
"""

import json
import logging
import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .embeddings import cosine_similarity, deserialize_embedding, serialize_embedding
from .errors import StoreError
from .models import RulingRecord

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS rulings (
    id TEXT PRIMARY KEY,
    ruling_type TEXT NOT NULL,
    url TEXT NOT NULL,
    ruling_date TEXT,
    hts_codes TEXT NOT NULL DEFAULT '[]',
    product_description TEXT NOT NULL DEFAULT '',
    classification TEXT NOT NULL DEFAULT '',
    rationale TEXT NOT NULL DEFAULT '',
    keywords TEXT NOT NULL DEFAULT '[]',
    category TEXT NOT NULL DEFAULT 'General',
    embedding BLOB,
    embedding_model TEXT,
    ingested_at TEXT NOT NULL,
    last_seen_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_rulings_type ON rulings (ruling_type);
CREATE INDEX IF NOT EXISTS idx_rulings_category ON rulings (category);
"""

COLUMNS = (
    "id, ruling_type, url, ruling_date, hts_codes, product_description, "
    "classification, rationale, keywords, category, embedding, embedding_model, "
    "ingested_at, last_seen_at"
)


class SQLiteAdapter:
    """SQLite ruling store with the shared async interface."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    async def initialize(self):
        """Open the connection and ensure the schema exists."""
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.executescript(SCHEMA)
            self.conn.commit()
            logger.info(f"SQLite ruling store initialized: {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize SQLite: {e}")
            raise StoreError(f"Failed to initialize SQLite store: {e}") from e

    async def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("SQLite connection closed")

    def _connection(self) -> sqlite3.Connection:
        if self.conn is None:
            raise StoreError("SQLite store not initialized. Call initialize() first.")
        return self.conn

    def _row_to_record(self, row: sqlite3.Row) -> RulingRecord:
        return RulingRecord(
            id=row['id'],
            source_url=row['url'],
            issue_date=date.fromisoformat(row['ruling_date']) if row['ruling_date'] else None,
            hts_codes=json.loads(row['hts_codes']),
            product_description=row['product_description'],
            classification=row['classification'],
            rationale=row['rationale'],
            keywords=json.loads(row['keywords']),
            category=row['category'],
            embedding=deserialize_embedding(row['embedding']) if row['embedding'] else None,
            embedding_model=row['embedding_model'],
            ingested_at=datetime.fromisoformat(row['ingested_at']),
            last_seen_at=datetime.fromisoformat(row['last_seen_at']),
        )

    async def upsert(self, record: RulingRecord) -> None:
        """Insert the ruling, or update it in place if the id already exists.

        ``ingested_at`` keeps its first value; everything else is replaced.
        """
        embedding_blob = serialize_embedding(record.embedding) if record.has_embedding else None
        params = (
            record.id,
            record.kind.value,
            record.source_url,
            record.issue_date.isoformat() if record.issue_date else None,
            json.dumps(record.hts_codes),
            record.product_description,
            record.classification,
            record.rationale,
            json.dumps(record.keywords),
            record.category,
            embedding_blob,
            record.embedding_model if embedding_blob else None,
            record.ingested_at.isoformat(),
            record.last_seen_at.isoformat(),
        )
        try:
            conn = self._connection()
            conn.execute(
                f"""
                INSERT INTO rulings ({COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    ruling_type = excluded.ruling_type,
                    url = excluded.url,
                    ruling_date = excluded.ruling_date,
                    hts_codes = excluded.hts_codes,
                    product_description = excluded.product_description,
                    classification = excluded.classification,
                    rationale = excluded.rationale,
                    keywords = excluded.keywords,
                    category = excluded.category,
                    embedding = excluded.embedding,
                    embedding_model = excluded.embedding_model,
                    last_seen_at = excluded.last_seen_at
                """,
                params
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to upsert ruling {record.id}: {e}") from e

    async def get_by_id(self, ruling_id: str) -> Optional[RulingRecord]:
        try:
            row = self._connection().execute(
                f"SELECT {COLUMNS} FROM rulings WHERE id = ?", (ruling_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read ruling {ruling_id}: {e}") from e
        return self._row_to_record(row) if row else None

    async def exists(self, ruling_id: str) -> bool:
        try:
            row = self._connection().execute(
                "SELECT 1 FROM rulings WHERE id = ?", (ruling_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to check ruling {ruling_id}: {e}") from e
        return row is not None

    async def vector_search(self, query_vector: np.ndarray, threshold: float = 0.5,
                            limit: int = 10) -> List[Tuple[RulingRecord, float]]:
        """Return rulings whose embedding is at least ``threshold`` similar, best first.

        Raises:
            DimensionMismatch: if a stored vector has a different length than the query
        """
        try:
            rows = self._connection().execute(
                f"SELECT {COLUMNS} FROM rulings WHERE embedding IS NOT NULL"
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Vector search failed: {e}") from e

        results = []
        for row in rows:
            record = self._row_to_record(row)
            similarity = cosine_similarity(query_vector, record.embedding)
            if similarity >= threshold:
                results.append((record, similarity))

        results.sort(key=lambda item: (-item[1], item[0].id))
        return results[:limit]

    async def list_all(self, limit: int = 1000, after: Optional[str] = None) -> List[RulingRecord]:
        """List rulings in id order, starting after the ``after`` id when given."""
        try:
            rows = self._connection().execute(
                f"SELECT {COLUMNS} FROM rulings WHERE id > ? ORDER BY id LIMIT ?",
                (after or "", limit)
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list rulings: {e}") from e
        return [self._row_to_record(row) for row in rows]

    async def count(self) -> int:
        try:
            return self._connection().execute("SELECT COUNT(*) FROM rulings").fetchone()[0]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to count rulings: {e}") from e

    async def list_missing_embeddings(self, limit: int = 100) -> List[RulingRecord]:
        """Rulings stored without a vector, oldest id first."""
        try:
            rows = self._connection().execute(
                f"SELECT {COLUMNS} FROM rulings WHERE embedding IS NULL ORDER BY id LIMIT ?",
                (limit,)
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list rulings without embeddings: {e}") from e
        return [self._row_to_record(row) for row in rows]

    async def update_embedding(self, ruling_id: str, embedding: np.ndarray, model: str) -> None:
        try:
            conn = self._connection()
            conn.execute(
                "UPDATE rulings SET embedding = ?, embedding_model = ? WHERE id = ?",
                (serialize_embedding(embedding), model, ruling_id)
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to update embedding for {ruling_id}: {e}") from e

    async def get_stats(self) -> Dict[str, Any]:
        """Corpus counts for monitoring."""
        try:
            cursor = self._connection().cursor()
            cursor.execute("SELECT ruling_type, COUNT(*) FROM rulings GROUP BY ruling_type")
            by_type = {row[0]: row[1] for row in cursor.fetchall()}
            cursor.execute("SELECT COUNT(*) FROM rulings WHERE embedding IS NOT NULL")
            embedded = cursor.fetchone()[0]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read store stats: {e}") from e

        return {
            'ruling_count': sum(by_type.values()),
            'rulings_by_type': by_type,
            'embedded_ruling_count': embedded,
        }
