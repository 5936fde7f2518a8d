"""Configuration loading and validation."""
import codecs
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

from sie_parser import DEFAULT_ENCODING

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("jsonl", "memory")


class ConfigError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class ParserConfig:
    """How SIE files are decoded and how strictly numbers are checked."""

    encoding: str = DEFAULT_ENCODING
    strict: bool = False


@dataclass
class AggregationConfig:
    """Which fiscal year is aggregated."""

    fiscal_year: int = 0


@dataclass
class StoreConfig:
    """Financial store configuration."""

    backend: str = "jsonl"
    path: str = "./data"


@dataclass
class ImportConfig:
    """Defaults for the import command."""

    tenant_id: str = "default"
    imported_by: str = "cli"


@dataclass
class Config:
    """Main configuration container."""

    parser: ParserConfig = field(default_factory=ParserConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    import_: ImportConfig = field(default_factory=ImportConfig)


def default_config() -> Config:
    """Configuration used when no file is given."""
    return Config()


def is_single_byte_encoding(encoding: str) -> bool:
    """True when every byte value decodes to exactly one character."""
    try:
        return len(bytes(range(256)).decode(encoding)) == 256
    except (LookupError, UnicodeDecodeError):
        return False


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Configuration section '{name}' must be a mapping")
    return section


def _typed(section: Dict[str, Any], section_name: str, key: str, expected: type, default: Any) -> Any:
    value = section.get(key, default)
    # bool is a subclass of int; don't accept it where a number is expected
    if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
        raise ConfigError(f"{section_name}.{key} must be of type {expected.__name__}, got {value!r}")
    return value


def load_config(path: str) -> Config:
    """Load configuration from YAML file.

    Every section and key is optional; missing values take the defaults of
    :func:`default_config`.

    Args:
        path: Path to YAML configuration file

    Returns:
        Config object with validated configuration

    Raises:
        ConfigError: If file not found, invalid YAML, or invalid values
    """
    config_path = Path(path)

    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping")

    defaults = default_config()

    parser_raw = _section(raw, "parser")
    parser = ParserConfig(
        encoding=_typed(parser_raw, "parser", "encoding", str, defaults.parser.encoding),
        strict=_typed(parser_raw, "parser", "strict", bool, defaults.parser.strict),
    )
    try:
        codecs.lookup(parser.encoding)
    except LookupError as e:
        raise ConfigError(f"Unknown encoding: {parser.encoding}") from e
    if not is_single_byte_encoding(parser.encoding):
        raise ConfigError(f"Encoding must be a single-byte code page: {parser.encoding}")

    aggregation_raw = _section(raw, "aggregation")
    aggregation = AggregationConfig(
        fiscal_year=_typed(aggregation_raw, "aggregation", "fiscal_year", int, defaults.aggregation.fiscal_year),
    )

    store_raw = _section(raw, "store")
    store = StoreConfig(
        backend=_typed(store_raw, "store", "backend", str, defaults.store.backend),
        path=_typed(store_raw, "store", "path", str, defaults.store.path),
    )
    if store.backend not in STORE_BACKENDS:
        raise ConfigError(f"Unknown store backend: {store.backend} (expected one of {', '.join(STORE_BACKENDS)})")

    import_raw = _section(raw, "import")
    import_ = ImportConfig(
        tenant_id=_typed(import_raw, "import", "tenant_id", str, defaults.import_.tenant_id),
        imported_by=_typed(import_raw, "import", "imported_by", str, defaults.import_.imported_by),
    )

    config = Config(parser=parser, aggregation=aggregation, store=store, import_=import_)

    logger.info(f"Loaded configuration from {path}")
    logger.debug(f"Parser: encoding={parser.encoding}, strict={parser.strict}")
    logger.debug(f"Store: {store.backend} at {store.path}")

    return config
