"""Configuration module for vault-inspector.

Loads configuration from an optional YAML file and environment variables,
with sensible defaults. Environment variables win over the file.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from vault_inspector.indexer.chunker import CHUNK_OVERLAP, MAX_CHUNK_SIZE
from vault_inspector.indexer.walker import (
    DEFAULT_EXCLUDE_PATTERNS,
    FINGERPRINT_CONTENT,
    FINGERPRINT_MTIME,
)

DEFAULT_HOME = Path.home() / ".vault-inspector"
DEFAULT_SEARCH_LIMIT = 20


def _load_file(config_file: Path) -> dict[str, Any]:
    """Read a YAML config file into a dict."""
    with open(config_file, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid config file '{config_file}': expected a mapping")
    return data


def _positive_int(key: str, value: Any, allow_zero: bool = False) -> int:
    try:
        number = int(value)
        minimum = 0 if allow_zero else 1
        if number < minimum:
            raise ValueError(f"must be >= {minimum}, got {number}")
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid {key} value '{value}': {e}") from e
    return number


@dataclass
class Config:
    """Application configuration."""

    vault_path: Path
    database_path: Path
    log_dir: Path | None
    exclude_patterns: tuple[str, ...]
    max_chunk_size: int
    chunk_overlap: int
    search_limit: int
    fingerprint: str

    @classmethod
    def from_env(cls, config_file: Path | None = None) -> "Config":
        """Load configuration from a YAML file and environment variables.

        Args:
            config_file: Optional YAML file. Falls back to VAULT_CONFIG.

        Raises:
            FileNotFoundError: The named config file does not exist.
            ValueError: A setting has an invalid value.
        """
        if config_file is None and os.getenv("VAULT_CONFIG"):
            config_file = Path(os.environ["VAULT_CONFIG"])

        data: dict[str, Any] = {}
        if config_file is not None:
            config_file = config_file.expanduser()
            if not config_file.is_file():
                raise FileNotFoundError(f"Config file not found: {config_file}")
            data = _load_file(config_file)

        vault_path = Path(os.getenv("VAULT_PATH", data.get("vault_path", "."))).expanduser()

        default_db = str(DEFAULT_HOME / "index.db")
        database_path = Path(
            os.getenv("VAULT_DB", data.get("database_path", default_db))
        ).expanduser()

        # An empty log dir disables file logging
        log_dir_str = os.getenv("VAULT_LOG_DIR", data.get("log_dir", str(DEFAULT_HOME / "logs")))
        log_dir = Path(log_dir_str).expanduser() if log_dir_str else None

        exclude_env = os.getenv("VAULT_EXCLUDE")
        if exclude_env is not None:
            exclude_patterns = tuple(p.strip() for p in exclude_env.split(",") if p.strip())
        else:
            exclude_value = data.get("exclude", list(DEFAULT_EXCLUDE_PATTERNS))
            if not isinstance(exclude_value, list):
                raise ValueError(f"Invalid exclude value '{exclude_value}': expected a list")
            exclude_patterns = tuple(str(p) for p in exclude_value)

        max_chunk_size = _positive_int(
            "VAULT_CHUNK_SIZE",
            os.getenv("VAULT_CHUNK_SIZE", data.get("chunk_size", MAX_CHUNK_SIZE)),
        )
        chunk_overlap = _positive_int(
            "VAULT_CHUNK_OVERLAP",
            os.getenv("VAULT_CHUNK_OVERLAP", data.get("chunk_overlap", CHUNK_OVERLAP)),
            allow_zero=True,
        )
        if chunk_overlap >= max_chunk_size:
            raise ValueError(
                f"Invalid VAULT_CHUNK_OVERLAP value '{chunk_overlap}': "
                f"must be smaller than the chunk size ({max_chunk_size})"
            )

        search_limit = _positive_int(
            "VAULT_SEARCH_LIMIT",
            os.getenv("VAULT_SEARCH_LIMIT", data.get("search_limit", DEFAULT_SEARCH_LIMIT)),
        )

        fingerprint = str(
            os.getenv("VAULT_FINGERPRINT", data.get("fingerprint", FINGERPRINT_MTIME))
        ).lower()
        if fingerprint not in (FINGERPRINT_MTIME, FINGERPRINT_CONTENT):
            raise ValueError(
                f"Invalid VAULT_FINGERPRINT value '{fingerprint}': "
                f"expected '{FINGERPRINT_MTIME}' or '{FINGERPRINT_CONTENT}'"
            )

        return cls(
            vault_path=vault_path,
            database_path=database_path,
            log_dir=log_dir,
            exclude_patterns=exclude_patterns,
            max_chunk_size=max_chunk_size,
            chunk_overlap=chunk_overlap,
            search_limit=search_limit,
            fingerprint=fingerprint,
        )

