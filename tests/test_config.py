"""Tests for settings, source definitions and logging setup."""

import json
import logging

import pytest

from config.database import DatabaseConfig, DatabaseType
from config.settings import CrawlerConfig, EmbeddingProvider, RelevanceConfig, Settings
from indexer.errors import ConfigurationError
from indexer.models import RulingKind
from observability.logging import JSONFormatter
from sources.loader import CrawlRange, SourceLoader, load_source_config


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.crawler.max_retries == 3
        assert settings.crawler.request_delay == 0.5
        assert settings.crawler.batch_size == 1
        assert settings.embedding.model == "text-embedding-3-small"
        assert settings.embedding.dimension == 1536
        assert settings.relevance.category_boost == 1.5
        assert settings.database.type == DatabaseType.SQLITE

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv('RULINGS_CRAWL_BATCH_SIZE', '10')
        monkeypatch.setenv('RULINGS_CRAWL_EMBED', 'false')
        monkeypatch.setenv('RULINGS_SEMANTIC_ENABLED', '0')
        monkeypatch.setenv('RULINGS_EMBEDDING_PROVIDER', 'local')
        monkeypatch.setenv('SQLITE_PATH', '/tmp/rulings-test.db')

        settings = Settings.from_env()

        assert settings.crawler.batch_size == 10
        assert settings.crawler.embed_records is False
        assert settings.relevance.semantic_enabled is False
        assert settings.embedding.provider == EmbeddingProvider.LOCAL
        assert settings.embedding.model == "all-MiniLM-L6-v2"
        assert settings.embedding.dimension == 384
        assert settings.database.sqlite_path == '/tmp/rulings-test.db'

    def test_postgres_from_env(self, monkeypatch):
        monkeypatch.setenv('RULINGS_DB_TYPE', 'postgresql')
        monkeypatch.setenv('POSTGRES_HOST', 'db.internal')
        config = DatabaseConfig.from_env()
        assert config.type == DatabaseType.POSTGRESQL
        assert config.postgres.host == 'db.internal'

    def test_validation(self):
        with pytest.raises(ValueError):
            CrawlerConfig(batch_size=0)
        with pytest.raises(ValueError):
            RelevanceConfig(semantic_threshold=1.5)


class TestSources:

    def test_bundled_source(self):
        source = load_source_config("cbp_rulings")

        assert source.name == "cbp_rulings"
        assert source.ranges[0] == CrawlRange(RulingKind.LOCAL, 330000, 340000)
        assert source.ranges[1] == CrawlRange(RulingKind.PRECEDENTIAL, 310000, 312000)
        assert len(source.ranges[0]) == 10001
        assert source.crawler_overrides['request_delay'] == 0.5

    def test_missing_source(self, tmp_path):
        with pytest.raises(ConfigurationError):
            SourceLoader(tmp_path).load_source_config("nope")

    def test_inverted_range_in_yaml(self, tmp_path):
        (tmp_path / "bad.yaml").write_text(
            "name: bad\nranges:\n  - kind: N\n    start: 20\n    end: 10\n"
        )
        with pytest.raises(ConfigurationError):
            SourceLoader(tmp_path).load_source_config("bad")

    def test_unknown_kind(self, tmp_path):
        (tmp_path / "bad.yaml").write_text(
            "name: bad\nranges:\n  - kind: X\n    start: 1\n    end: 10\n"
        )
        with pytest.raises(ConfigurationError):
            SourceLoader(tmp_path).load_source_config("bad")

    def test_load_all(self, tmp_path):
        (tmp_path / "small.yaml").write_text(
            "name: small\nbatch_size: 5\nranges:\n  - kind: h\n    start: 1\n    end: 3\n"
        )
        sources = SourceLoader(tmp_path).load_all_sources()
        assert list(sources) == ["small"]
        assert sources["small"].crawler_overrides == {'batch_size': 5}
        assert str(sources["small"].ranges[0]) == "H1-H3"


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("pipelines.crawler", logging.INFO, __file__, 1,
                               "Stored %s", ("N330001",), None)
    record.ruling_id = "N330001"

    entry = json.loads(JSONFormatter("rulings-crawler").format(record))

    assert entry['message'] == "Stored N330001"
    assert entry['service'] == "rulings-crawler"
    assert entry['ruling_id'] == "N330001"
    assert entry['level'] == "INFO"
