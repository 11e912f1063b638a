"""Configuration system for the Kura search service.

This module handles loading settings from environment variables and an INI
file, providing sensible defaults, and computing derived paths inside the
data directory.
"""

from configparser import ConfigParser
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional
import os

from kura.constants.search import (
    DEFAULT_SEARCH_LIMIT,
    MAX_SEARCH_LIMIT,
    MIN_SEARCH_LIMIT,
    SNIPPET_MAX_LENGTH,
)


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# Schema: section -> key -> (type, default, min, max, description)
CONFIG_SCHEMA: dict[str, dict[str, tuple[type, Any, Any, Any, str]]] = {
    "search": {
        "mode": (str, "combined", None, None, "Backend strategy: combined or fallback"),
        "limit_policy": (str, "reject", None, None, "Out-of-range limit: reject or clamp"),
        "default_limit": (
            int,
            DEFAULT_SEARCH_LIMIT,
            MIN_SEARCH_LIMIT,
            MAX_SEARCH_LIMIT,
            "Results returned when no limit is given",
        ),
        "max_limit": (
            int,
            MAX_SEARCH_LIMIT,
            MIN_SEARCH_LIMIT,
            MAX_SEARCH_LIMIT,
            "Largest accepted limit",
        ),
        "max_query_length": (int, 1000, 1, 10000, "Longest accepted query in characters"),
        "candidate_multiplier": (int, 3, 1, 20, "Candidate pool size as a multiple of limit"),
        "max_candidate_pool": (int, 200, 1, 5000, "Upper bound on any backend k"),
        "max_widening_rounds": (int, 3, 0, 10, "Re-query rounds when filters under-fill"),
        "widening_factor": (int, 2, 2, 10, "Pool growth per widening round"),
        "snippet_max_length": (int, SNIPPET_MAX_LENGTH, 50, 1000, "Max excerpt length in results"),
    },
    "timeouts": {
        "embedding_seconds": (float, 10.0, 0.1, 120.0, "Embedding provider timeout"),
        "vector_seconds": (float, 5.0, 0.1, 120.0, "Vector index query timeout"),
        "lexical_seconds": (float, 5.0, 0.1, 120.0, "Lexical index query timeout"),
    },
    "embedding": {
        "max_text_length": (int, 8000, 100, 100_000, "Characters sent to the provider"),
        "max_retries": (int, 3, 1, 10, "Attempts for transient provider errors"),
        "retry_delay_seconds": (float, 1.0, 0.0, 60.0, "Initial backoff delay"),
    },
    "query_log": {
        "queue_size": (int, 1000, 1, 100_000, "Pending query log entries kept in memory"),
        "history_enabled": (bool, True, None, None, "Write entries to search_history"),
        "jsonl_enabled": (bool, False, None, None, "Also append entries to a JSONL file"),
    },
    "paths": {
        "db_file": (str, "kura.db", None, None, "SQLite database file name"),
        "chroma_dir": (str, "chroma", None, None, "ChromaDB directory name"),
        "logs_dir": (str, "logs", None, None, "Logs directory name"),
    },
}

# Allowed values for string settings that are really enums
CONFIG_CHOICES: dict[str, dict[str, tuple[str, ...]]] = {
    "search": {
        "mode": ("combined", "fallback"),
        "limit_policy": ("reject", "clamp"),
    },
}


@dataclass(frozen=True)
class SearchConfig:
    """Search orchestration configuration."""

    mode: str
    limit_policy: str
    default_limit: int
    max_limit: int
    max_query_length: int
    candidate_multiplier: int
    max_candidate_pool: int
    max_widening_rounds: int
    widening_factor: int
    snippet_max_length: int


@dataclass(frozen=True)
class TimeoutsConfig:
    """Per-backend call timeouts, in seconds."""

    embedding_seconds: float
    vector_seconds: float
    lexical_seconds: float


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding provider adapter configuration."""

    max_text_length: int
    max_retries: int
    retry_delay_seconds: float


@dataclass(frozen=True)
class QueryLogConfig:
    """Query log configuration."""

    queue_size: int
    history_enabled: bool
    jsonl_enabled: bool


@dataclass(frozen=True)
class PathsConfig:
    """Path names configuration."""

    db_file: str
    chroma_dir: str
    logs_dir: str


def _load_section(
    parser: ConfigParser, section: str, schema: dict[str, tuple[type, Any, Any, Any, str]]
) -> dict[str, Any]:
    """Load and validate a configuration section.

    Args:
        parser: ConfigParser instance with loaded config
        section: Section name to load
        schema: Schema definition for the section

    Returns:
        Dictionary of validated configuration values

    Raises:
        ConfigError: If validation fails
    """
    result = {}
    choices = CONFIG_CHOICES.get(section, {})

    for key, (typ, default, min_val, max_val, _) in schema.items():
        if parser.has_option(section, key):
            raw_value = parser.get(section, key)
            value: bool | int | float | str
            try:
                if typ is bool:
                    value = raw_value.lower() in ("true", "1", "yes", "on")
                elif typ is int:
                    value = int(raw_value)
                elif typ is float:
                    value = float(raw_value)
                else:
                    value = raw_value.strip()
            except ValueError as e:
                raise ConfigError(
                    f"Invalid value for [{section}].{key}: {raw_value!r} (expected {typ.__name__})"
                ) from e
        else:
            value = default

        if typ in (int, float) and value is not None:
            if min_val is not None and value < min_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but minimum is {min_val}"
                )
            if max_val is not None and value > max_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but maximum is {max_val}"
                )

        allowed = choices.get(key)
        if allowed is not None and value not in allowed:
            raise ConfigError(
                f"Value for [{section}].{key} is {value!r}, expected one of {', '.join(allowed)}"
            )

        result[key] = value

    return result


def _defaults(section: str) -> dict[str, Any]:
    return {key: default for key, (_, default, _, _, _) in CONFIG_SCHEMA[section].items()}


def _load_config(config_path: Optional[Path] = None) -> "Config":
    """Load configuration from an INI file (internal use only).

    Args:
        config_path: Path to config file. If None, uses defaults from schema.

    Returns:
        Config object with all sections populated and a default data_dir.

    Raises:
        ConfigError: If validation fails
    """
    parser = ConfigParser()

    if config_path and config_path.exists():
        parser.read(config_path)

    search = SearchConfig(**_load_section(parser, "search", CONFIG_SCHEMA["search"]))
    timeouts = TimeoutsConfig(**_load_section(parser, "timeouts", CONFIG_SCHEMA["timeouts"]))
    embedding = EmbeddingConfig(**_load_section(parser, "embedding", CONFIG_SCHEMA["embedding"]))
    query_log = QueryLogConfig(**_load_section(parser, "query_log", CONFIG_SCHEMA["query_log"]))
    paths = PathsConfig(**_load_section(parser, "paths", CONFIG_SCHEMA["paths"]))

    if search.default_limit > search.max_limit:
        raise ConfigError(
            f"Value for [search].default_limit is {search.default_limit}, "
            f"but [search].max_limit is {search.max_limit}"
        )

    return Config(
        search=search,
        timeouts=timeouts,
        embedding=embedding,
        query_log=query_log,
        paths=paths,
    )


def mask_secret(value: Optional[str]) -> str:
    """Mask a secret for display, keeping only its first and last four characters."""
    if not value:
        return "<not set>"
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}...{value[-4:]}"


@dataclass(frozen=True)
class Config:
    """Complete application configuration."""

    data_dir: Path = None  # type: ignore[assignment]  # Set in __post_init__ if None
    openai_api_key: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"
    embedding_api_base: Optional[str] = None

    # Section configs - defaults set in __post_init__
    search: SearchConfig = None  # type: ignore[assignment]
    timeouts: TimeoutsConfig = None  # type: ignore[assignment]
    embedding: EmbeddingConfig = None  # type: ignore[assignment]
    query_log: QueryLogConfig = None  # type: ignore[assignment]
    paths: PathsConfig = None  # type: ignore[assignment]

    def __post_init__(self):
        """Initialize section configs with defaults if not provided."""
        # Since frozen=True, we need to use object.__setattr__
        if self.data_dir is None:
            object.__setattr__(self, "data_dir", Path.home() / ".kura")
        if self.search is None:
            object.__setattr__(self, "search", SearchConfig(**_defaults("search")))
        if self.timeouts is None:
            object.__setattr__(self, "timeouts", TimeoutsConfig(**_defaults("timeouts")))
        if self.embedding is None:
            object.__setattr__(self, "embedding", EmbeddingConfig(**_defaults("embedding")))
        if self.query_log is None:
            object.__setattr__(self, "query_log", QueryLogConfig(**_defaults("query_log")))
        if self.paths is None:
            object.__setattr__(self, "paths", PathsConfig(**_defaults("paths")))

    @property
    def db_path(self) -> Path:
        """Path to the SQLite metadata and full-text database."""
        return self.data_dir / self.paths.db_file

    @property
    def chroma_path(self) -> Path:
        """Path to ChromaDB vector store directory."""
        return self.data_dir / self.paths.chroma_dir

    @property
    def query_log_path(self) -> Path:
        """Path to the JSONL query log file."""
        return self.data_dir / self.paths.logs_dir / "search-queries.jsonl"

    def describe(self) -> dict[str, Any]:
        """Summarize the configuration for logging, with secrets masked."""
        return {
            "data_dir": str(self.data_dir),
            "db_path": str(self.db_path),
            "chroma_path": str(self.chroma_path),
            "embedding_model": self.embedding_model,
            "embedding_api_base": self.embedding_api_base,
            "openai_api_key": mask_secret(self.openai_api_key),
            "search_mode": self.search.mode,
            "limit_policy": self.search.limit_policy,
            "timeouts": {
                "embedding": self.timeouts.embedding_seconds,
                "vector": self.timeouts.vector_seconds,
                "lexical": self.timeouts.lexical_seconds,
            },
        }


@lru_cache(maxsize=1)
def load_settings() -> Config:
    """Load settings from environment variables and config file.

    Settings are cached for the lifetime of the application.
    Use load_settings.cache_clear() to reload settings.

    Returns:
        Config object populated from environment variables and config file.

    Raises:
        ConfigError: If the config file or an override is invalid.
    """
    data_dir_str = os.getenv("KURA_DATA_DIR")
    data_dir = Path(data_dir_str) if data_dir_str else Path.home() / ".kura"

    config_file_str = os.getenv("KURA_CONFIG_FILE")
    config_file = Path(config_file_str) if config_file_str else data_dir / "config.ini"
    try:
        config_exists = config_file.exists()
    except PermissionError:
        config_exists = False
    base_config = _load_config(config_file if config_exists else None)

    search = base_config.search
    mode_override = os.getenv("KURA_SEARCH_MODE")
    if mode_override:
        if mode_override not in CONFIG_CHOICES["search"]["mode"]:
            raise ConfigError(
                f"KURA_SEARCH_MODE is {mode_override!r}, expected one of "
                f"{', '.join(CONFIG_CHOICES['search']['mode'])}"
            )
        search = SearchConfig(**{**search.__dict__, "mode": mode_override})

    return Config(
        data_dir=data_dir,
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
        embedding_api_base=os.getenv("EMBEDDING_API_BASE"),
        search=search,
        timeouts=base_config.timeouts,
        embedding=base_config.embedding,
        query_log=base_config.query_log,
        paths=base_config.paths,
    )
