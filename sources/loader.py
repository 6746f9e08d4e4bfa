"""Crawl source configuration loader.

Loads and validates ruling source definitions (ID ranges plus pacing
overrides) from YAML files.
"""

import yaml
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
import logging

from indexer.errors import ConfigurationError
from indexer.models import RulingKind

logger = logging.getLogger(__name__)

# Keys in a source file that override CrawlerConfig fields
CRAWLER_OVERRIDES = (
    'base_url', 'user_agent', 'request_timeout', 'max_retries', 'retry_delay',
    'max_retry_delay', 'request_delay', 'batch_size', 'batch_delay',
    'max_concurrent', 'report_every', 'embed_records', 'embed_retries',
    'min_content_length',
)


@dataclass(frozen=True)
class CrawlRange:
    """An inclusive numeric ID range within one ruling family."""
    kind: RulingKind
    start: int
    end: int

    def __post_init__(self):
        if not isinstance(self.kind, RulingKind):
            raise ConfigurationError(f"Invalid ruling kind: {self.kind!r}")
        if self.start < 0 or self.end < 0:
            raise ConfigurationError(f"Negative ID in range {self.start}-{self.end}")
        if self.start > self.end:
            raise ConfigurationError(f"Range start {self.start} is after end {self.end}")

    def __len__(self) -> int:
        return self.end - self.start + 1

    def numbers(self) -> range:
        return range(self.start, self.end + 1)

    def __str__(self) -> str:
        return f"{self.kind.prefix}{self.start}-{self.kind.prefix}{self.end}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CrawlRange':
        try:
            kind = RulingKind(str(data['kind']).upper())
            return cls(kind=kind, start=int(data['start']), end=int(data['end']))
        except KeyError as e:
            raise ConfigurationError(f"Crawl range missing field {e}") from None
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid crawl range {data!r}: {e}") from None


@dataclass
class RulingSourceConfig:
    """A named set of ruling ID ranges and the pacing used to crawl them."""
    name: str
    ranges: List[CrawlRange]
    crawler_overrides: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    def __post_init__(self):
        if not self.name:
            raise ConfigurationError("Source name cannot be empty")
        if not self.ranges:
            raise ConfigurationError(f"Source {self.name} must define at least one range")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RulingSourceConfig':
        ranges = [CrawlRange.from_dict(item) for item in data.get('ranges') or []]
        overrides = {key: data[key] for key in CRAWLER_OVERRIDES if key in data}
        return cls(
            name=data.get('name', ''),
            ranges=ranges,
            crawler_overrides=overrides,
            enabled=data.get('enabled', True)
        )


class SourceLoader:
    """Loads ruling source configurations from YAML files."""

    def __init__(self, sources_dir: Optional[Path] = None):
        if sources_dir is None:
            sources_dir = Path(__file__).parent
        self.sources_dir = Path(sources_dir)

    def load_source_config(self, source_name: str) -> RulingSourceConfig:
        """Load configuration for a specific source.

        Raises:
            ConfigurationError: if the file is missing or invalid
        """
        yaml_file = self.sources_dir / f"{source_name}.yaml"

        if not yaml_file.exists():
            raise ConfigurationError(f"Source configuration not found: {yaml_file}")

        try:
            with open(yaml_file, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML file {yaml_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Empty or invalid YAML file: {yaml_file}")

        if data.get('name', source_name) != source_name:
            logger.warning(f"Source name mismatch in {yaml_file}: {data['name']} != {source_name}")
        data['name'] = source_name

        config = RulingSourceConfig.from_dict(data)
        logger.info(f"Loaded source configuration: {source_name} ({len(config.ranges)} ranges)")
        return config

    def load_all_sources(self) -> Dict[str, RulingSourceConfig]:
        """Load every source definition in the directory."""
        return {
            yaml_file.stem: self.load_source_config(yaml_file.stem)
            for yaml_file in sorted(self.sources_dir.glob("*.yaml"))
        }


def load_source_config(source_name: str, sources_dir: Optional[Path] = None) -> RulingSourceConfig:
    """Convenience function to load a source configuration."""
    return SourceLoader(sources_dir).load_source_config(source_name)
