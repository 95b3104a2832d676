"""
Configuration Module - Load and manage chat memory configuration.

This module provides support for loading configuration from:
- YAML configuration files (.chat-memory.yml)
- Environment variables
- Programmatic configuration

Configuration precedence (highest to lowest):
1. Programmatic configuration (passed as overrides)
2. Environment variables
3. Configuration file
4. Default values
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .llm.base import LLMConfig


logger = logging.getLogger(__name__)


# Default configuration file names (in order of precedence)
CONFIG_FILE_NAMES = [
    ".chat-memory.yml",
    ".chat-memory.yaml",
    "chat-memory.yml",
    "chat-memory.yaml",
]


@dataclass
class LLMSettings:
    """Chat completion and embedding endpoint settings."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1024
    timeout: float = 60.0
    max_retries: int = 3


@dataclass
class EmbeddingSettings:
    """Embedding backend selection."""

    backend: str = "openai"  # "openai", "local" or "hashing"
    model: str = "text-embedding-3-small"
    cache_size: int = 100
    dimension: int = 128  # hashing backend only


@dataclass
class SimilaritySettings:
    """Similarity search thresholds."""

    embedding_threshold: float = 0.7
    keyword_threshold: float = 0.3
    max_results: int = 3
    max_key_terms: int = 15


@dataclass
class CacheSettings:
    """Generic cache limits. Times are in seconds, sizes in bytes."""

    max_size: int = 50 * 1024 * 1024
    max_entries: int = 1000
    default_ttl: float = 24 * 60 * 60
    cleanup_interval: float = 60 * 60
    persist_threshold: int = 100 * 1024
    cache_dir: Optional[str] = None  # no persistent tier when unset


@dataclass
class StoreSettings:
    """Memory store location."""

    db_path: Optional[str] = None  # defaults to ~/.chat_memory/chat_memory.db


@dataclass
class ChatMemoryConfig:
    """
    Complete configuration for the chat memory engine.

    Example YAML configuration:
        ```yaml
        llm:
          model: "gpt-4o-mini"
          temperature: 0.3

        embedding:
          backend: "openai"
          model: "text-embedding-3-small"

        similarity:
          embedding_threshold: 0.7
          keyword_threshold: 0.3

        cache:
          default_ttl: 86400
          cache_dir: "~/.chat_memory/cache"

        store:
          db_path: "~/.chat_memory/chat_memory.db"
        ```
    """

    llm: LLMSettings = field(default_factory=LLMSettings)
    embedding: EmbeddingSettings = field(default_factory=EmbeddingSettings)
    similarity: SimilaritySettings = field(default_factory=SimilaritySettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    store: StoreSettings = field(default_factory=StoreSettings)

    def to_llm_config(self) -> LLMConfig:
        """Convert to LLMConfig for provider initialization."""
        return LLMConfig(
            provider=self.llm.provider,
            model=self.llm.model,
            embedding_model=self.embedding.model,
            api_key=self.llm.api_key,
            api_base=self.llm.api_base,
            temperature=self.llm.temperature,
            max_tokens=self.llm.max_tokens,
            timeout=self.llm.timeout,
            max_retries=self.llm.max_retries,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "ChatMemoryConfig":
        """Create configuration from dictionary."""
        llm_data = data.get("llm") or {}
        embedding_data = data.get("embedding") or {}
        similarity_data = data.get("similarity") or {}
        cache_data = data.get("cache") or {}
        store_data = data.get("store") or {}

        return cls(
            llm=LLMSettings(
                provider=llm_data.get("provider", "openai"),
                model=llm_data.get("model", "gpt-4o-mini"),
                api_key=llm_data.get("api_key"),
                api_base=llm_data.get("api_base"),
                temperature=float(llm_data.get("temperature", 0.7)),
                max_tokens=int(llm_data.get("max_tokens", 1024)),
                timeout=float(llm_data.get("timeout", 60.0)),
                max_retries=int(llm_data.get("max_retries", 3)),
            ),
            embedding=EmbeddingSettings(
                backend=embedding_data.get("backend", "openai"),
                model=embedding_data.get("model", "text-embedding-3-small"),
                cache_size=int(embedding_data.get("cache_size", 100)),
                dimension=int(embedding_data.get("dimension", 128)),
            ),
            similarity=SimilaritySettings(
                embedding_threshold=float(similarity_data.get("embedding_threshold", 0.7)),
                keyword_threshold=float(similarity_data.get("keyword_threshold", 0.3)),
                max_results=int(similarity_data.get("max_results", 3)),
                max_key_terms=int(similarity_data.get("max_key_terms", 15)),
            ),
            cache=CacheSettings(
                max_size=int(cache_data.get("max_size", 50 * 1024 * 1024)),
                max_entries=int(cache_data.get("max_entries", 1000)),
                default_ttl=float(cache_data.get("default_ttl", 24 * 60 * 60)),
                cleanup_interval=float(cache_data.get("cleanup_interval", 60 * 60)),
                persist_threshold=int(cache_data.get("persist_threshold", 100 * 1024)),
                cache_dir=cache_data.get("cache_dir"),
            ),
            store=StoreSettings(
                db_path=store_data.get("db_path"),
            ),
        )

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {
            "llm": {
                "provider": self.llm.provider,
                "model": self.llm.model,
                "api_key": "***" if self.llm.api_key else None,  # Redact API key
                "api_base": self.llm.api_base,
                "temperature": self.llm.temperature,
                "max_tokens": self.llm.max_tokens,
                "timeout": self.llm.timeout,
                "max_retries": self.llm.max_retries,
            },
            "embedding": {
                "backend": self.embedding.backend,
                "model": self.embedding.model,
                "cache_size": self.embedding.cache_size,
                "dimension": self.embedding.dimension,
            },
            "similarity": {
                "embedding_threshold": self.similarity.embedding_threshold,
                "keyword_threshold": self.similarity.keyword_threshold,
                "max_results": self.similarity.max_results,
                "max_key_terms": self.similarity.max_key_terms,
            },
            "cache": {
                "max_size": self.cache.max_size,
                "max_entries": self.cache.max_entries,
                "default_ttl": self.cache.default_ttl,
                "cleanup_interval": self.cache.cleanup_interval,
                "persist_threshold": self.cache.persist_threshold,
                "cache_dir": self.cache.cache_dir,
            },
            "store": {
                "db_path": self.store.db_path,
            },
        }


def find_config_file(start_path: Optional[str] = None) -> Optional[Path]:
    """
    Find the configuration file starting from the given path.

    Searches in the following order:
    1. The specified start_path directory
    2. Current working directory
    3. Parent directories up to the root
    4. User home directory

    Args:
        start_path: Directory to start searching from.

    Returns:
        Path to configuration file if found, None otherwise.
    """
    search_dirs = []

    if start_path:
        search_dirs.append(Path(start_path))

    search_dirs.append(Path.cwd())

    current = Path.cwd()
    while current.parent != current:
        current = current.parent
        search_dirs.append(current)

    search_dirs.append(Path.home())

    for directory in search_dirs:
        for config_name in CONFIG_FILE_NAMES:
            config_path = directory / config_name
            if config_path.exists() and config_path.is_file():
                logger.debug(f"Found config file: {config_path}")
                return config_path

    return None


def load_yaml_file(file_path: Path) -> dict:
    """
    Load a YAML configuration file.

    Unreadable or malformed files are logged and treated as empty.

    Args:
        file_path: Path to the YAML file.

    Returns:
        Dictionary with configuration data.
    """
    try:
        with open(file_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading config file {file_path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {file_path}: top level must be a mapping")
        return {}
    return data


def load_config_from_env() -> dict:
    """
    Load configuration from environment variables.

    Supported environment variables:
    - CHAT_MEMORY_DB_PATH: Memory store database path
    - CHAT_MEMORY_MODEL: Chat completion model
    - CHAT_MEMORY_EMBEDDING_MODEL: Embedding model
    - CHAT_MEMORY_EMBEDDING_BACKEND: openai, local or hashing
    - CHAT_MEMORY_CACHE_DIR: Persistent cache directory
    - OPENAI_API_KEY: OpenAI API key
    - OPENAI_BASE_URL: OpenAI-compatible endpoint

    Returns:
        Dictionary with configuration from environment.
    """
    config: dict = {"llm": {}, "embedding": {}, "cache": {}, "store": {}}

    if os.environ.get("CHAT_MEMORY_DB_PATH"):
        config["store"]["db_path"] = os.environ["CHAT_MEMORY_DB_PATH"]

    if os.environ.get("CHAT_MEMORY_MODEL"):
        config["llm"]["model"] = os.environ["CHAT_MEMORY_MODEL"]

    if os.environ.get("OPENAI_API_KEY"):
        config["llm"]["api_key"] = os.environ["OPENAI_API_KEY"]

    if os.environ.get("OPENAI_BASE_URL"):
        config["llm"]["api_base"] = os.environ["OPENAI_BASE_URL"]

    if os.environ.get("CHAT_MEMORY_EMBEDDING_MODEL"):
        config["embedding"]["model"] = os.environ["CHAT_MEMORY_EMBEDDING_MODEL"]

    if os.environ.get("CHAT_MEMORY_EMBEDDING_BACKEND"):
        config["embedding"]["backend"] = os.environ["CHAT_MEMORY_EMBEDDING_BACKEND"]

    if os.environ.get("CHAT_MEMORY_CACHE_DIR"):
        config["cache"]["cache_dir"] = os.environ["CHAT_MEMORY_CACHE_DIR"]

    return config


def load_config(
    config_path: Optional[str] = None,
    **overrides: Any,
) -> ChatMemoryConfig:
    """
    Load configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Overrides passed as keyword arguments
    2. Environment variables
    3. Configuration file
    4. Default values

    Overrides are section dictionaries, e.g. ``store={"db_path": ...}``.

    Args:
        config_path: Optional explicit path to config file.
        **overrides: Configuration overrides.

    Returns:
        Merged ChatMemoryConfig.
    """
    merged_config: dict = {}

    if config_path:
        file_path = Path(config_path)
        if file_path.exists():
            merged_config = _deep_merge(merged_config, load_yaml_file(file_path))
        else:
            logger.warning(f"Config file not found: {config_path}")
    else:
        config_file = find_config_file()
        if config_file:
            merged_config = _deep_merge(merged_config, load_yaml_file(config_file))

    merged_config = _deep_merge(merged_config, load_config_from_env())

    if overrides:
        merged_config = _deep_merge(merged_config, overrides)

    return ChatMemoryConfig.from_dict(merged_config)


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Dictionary with override values.

    Returns:
        Merged dictionary.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        elif value is not None:
            result[key] = value

    return result


def create_default_config_file(path: Optional[str] = None) -> Path:
    """
    Create a default configuration file.

    Args:
        path: Optional path for the config file.

    Returns:
        Path to the created config file.
    """
    if path:
        config_path = Path(path)
    else:
        config_path = Path.cwd() / ".chat-memory.yml"

    default_content = """# Chat Memory Configuration

llm:
  # Model used for summaries, tags and titles
  model: "gpt-4o-mini"
  temperature: 0.7

embedding:
  # Embedding backend: openai, local (sentence-transformers) or hashing
  backend: "openai"
  model: "text-embedding-3-small"
  cache_size: 100

similarity:
  # Cosine similarity threshold for embedding matches
  embedding_threshold: 0.7
  # Jaccard threshold for keyword matches
  keyword_threshold: 0.3
  max_results: 3

cache:
  max_entries: 1000
  default_ttl: 86400  # seconds
  cleanup_interval: 3600  # seconds
  # cache_dir: "~/.chat_memory/cache"

store:
  # db_path: "~/.chat_memory/chat_memory.db"
"""

    config_path.write_text(default_content)
    logger.info(f"Created default config file: {config_path}")

    return config_path
