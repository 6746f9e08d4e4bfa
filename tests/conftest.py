"""Shared fixtures for the ruling corpus test suite."""

from typing import List, Optional

import numpy as np
import pytest

from indexer.models import RulingRecord
from indexer.sqlite_adapter import SQLiteAdapter

RULING_HTML = """
<html>
<head><title>N330001 - Classification of footwear</title>
<script>var tracking = "6109.10.00";</script></head>
<body>
<nav>Home | Search | 9999.99.99</nav>
<div class="ruling-content">
<p>N330001</p>
<p>January 5, 2023</p>
<p>The merchandise under consideration is a men's running shoe with a rubber outer sole and a textile upper, manufactured in Vietnam.</p>
<p>The running shoe is classified under subheading 6404.11.90, HTSUS, which provides for footwear with outer soles of rubber.</p>
<p>In your letter you suggested subheading 6402.91.50. That provision does not cover this shoe because the upper is textile.</p>
</div>
<footer>Contact 1234.56</footer>
</body>
</html>
"""


@pytest.fixture
def ruling_html() -> str:
    return RULING_HTML


@pytest.fixture
async def store(tmp_path):
    """Initialized SQLite store in a temp directory."""
    adapter = SQLiteAdapter(str(tmp_path / "rulings.db"))
    await adapter.initialize()
    yield adapter
    await adapter.close()


@pytest.fixture
def make_record():
    """Factory for ruling records with sensible defaults."""

    def _make(ruling_id: str = "N330001",
              keywords: Optional[List[str]] = None,
              category: str = "General",
              hts_codes: Optional[List[str]] = None,
              description: str = "",
              embedding: Optional[List[float]] = None) -> RulingRecord:
        return RulingRecord(
            id=ruling_id,
            source_url=f"https://rulings.cbp.gov/ruling/{ruling_id}",
            hts_codes=hts_codes if hts_codes is not None else ["6404.11.90"],
            product_description=description,
            keywords=keywords or [],
            category=category,
            embedding=np.asarray(embedding, dtype=np.float32) if embedding is not None else None,
            embedding_model="test-model" if embedding is not None else None,
        )

    return _make
