"""Data model for the ruling corpus."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .extractor import is_valid_hts_code

RULINGS_BASE_URL = "https://rulings.cbp.gov/ruling/{ruling_id}"


class RulingKind(str, Enum):
    """Ruling families, keyed by the ID prefix."""
    LOCAL = "N"           # New York port rulings
    PRECEDENTIAL = "H"    # Headquarters rulings

    @property
    def prefix(self) -> str:
        return self.value


class MatchKind(str, Enum):
    LEXICAL = "lexical"
    SEMANTIC = "semantic"


def ruling_id(kind: RulingKind, number: int) -> str:
    """Build the external ruling ID, e.g. ``N330001``."""
    return f"{kind.prefix}{number}"


def parse_ruling_id(value: str) -> Tuple[RulingKind, int]:
    """Split a ruling ID into its kind and numeric sequence.

    Raises:
        ValueError: if the prefix is unknown or the tail is not numeric
    """
    value = (value or "").strip().upper()
    if len(value) < 2:
        raise ValueError(f"Invalid ruling id: {value!r}")

    prefix, tail = value[0], value[1:]
    try:
        kind = RulingKind(prefix)
    except ValueError:
        raise ValueError(f"Unknown ruling prefix in {value!r}") from None

    if not tail.isdigit():
        raise ValueError(f"Non-numeric ruling sequence in {value!r}")
    return kind, int(tail)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RulingRecord:
    """One classification precedent as stored in the corpus."""
    id: str
    source_url: str
    hts_codes: List[str]
    issue_date: Optional[date] = None
    product_description: str = ""
    classification: str = ""
    rationale: str = ""
    keywords: List[str] = field(default_factory=list)
    category: str = "General"
    embedding: Optional[np.ndarray] = None
    embedding_model: Optional[str] = None
    ingested_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None

    # Length caps for extracted text spans
    MAX_DESCRIPTION = 2000
    MAX_CLASSIFICATION = 1000
    MAX_RATIONALE = 5000

    def __post_init__(self):
        # Malformed codes never reach the store
        self.hts_codes = sorted({code for code in self.hts_codes if is_valid_hts_code(code)})
        self.product_description = (self.product_description or "")[:self.MAX_DESCRIPTION]
        self.classification = (self.classification or "")[:self.MAX_CLASSIFICATION]
        self.rationale = (self.rationale or "")[:self.MAX_RATIONALE]

        now = _utcnow()
        if self.ingested_at is None:
            self.ingested_at = now
        if self.last_seen_at is None:
            self.last_seen_at = now

    @property
    def kind(self) -> RulingKind:
        return parse_ruling_id(self.id)[0]

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and self.embedding.size > 0

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'kind': self.kind.name.lower(),
            'source_url': self.source_url,
            'issue_date': self.issue_date.isoformat() if self.issue_date else None,
            'hts_codes': list(self.hts_codes),
            'product_description': self.product_description,
            'classification': self.classification,
            'rationale': self.rationale,
            'keywords': list(self.keywords),
            'category': self.category,
            'ingested_at': self.ingested_at.isoformat() if self.ingested_at else None,
            'last_seen_at': self.last_seen_at.isoformat() if self.last_seen_at else None,
        }
        if include_embedding:
            result['embedding'] = self.embedding.tolist() if self.has_embedding else None
            result['embedding_model'] = self.embedding_model
        return result


@dataclass
class Query:
    """A free-text product description with an optional category override."""
    text: str
    category: Optional[str] = None


@dataclass
class ScoredResult:
    """A ruling paired with a transient relevance score. Never persisted."""
    record: RulingRecord
    score: float
    match_kind: MatchKind

    @property
    def id(self) -> str:
        return self.record.id


@dataclass
class RankingResponse:
    """Ordered ranking plus the context a caller needs to render it."""
    results: List[ScoredResult]
    category: str
    total: int
    matches: int
    degraded: bool = False

    @property
    def rulings(self) -> List[RulingRecord]:
        return [result.record for result in self.results]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize without the internal scores."""
        return {
            'category': self.category,
            'rulings': [record.to_dict() for record in self.rulings],
            'total': self.total,
            'matches': self.matches,
            'degraded': self.degraded,
        }
