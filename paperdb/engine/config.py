"""
PaperDB Configuration — Load and validate paperdb.yaml at startup.

Usage:
    from paperdb.engine.config import load_config, get_config
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from paperdb.engine.errors import PaperDBConfigError

CONFIG_FILE_NAME = "paperdb.yaml"
CONFIG_ENV_VAR = "PAPERDB_CONFIG"


# ---------------------------------------------------------------------------
# Pydantic models for paperdb.yaml
# ---------------------------------------------------------------------------

class IdentityConfig(BaseModel):
    # Relative paths resolve against PaperDBConfig.directory
    key_file: str = "keys/identity.pem"
    create_if_missing: bool = True


class LogStoreConfig(BaseModel):
    backend: str = "memory"
    url: Optional[str] = None
    echo: bool = False

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in ("memory", "sql"):
            raise ValueError(f"logstore.backend must be memory/sql, got '{v}'")
        return v


class BlobStoreConfig(BaseModel):
    backend: str = "memory"
    gateway_url: str = "http://127.0.0.1:8080"
    timeout: float = 30.0

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in ("memory", "gateway"):
            raise ValueError(f"blobstore.backend must be memory/gateway, got '{v}'")
        return v


class AccessConfig(BaseModel):
    # Admit the write when an access controller raises
    fail_open: bool = True


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file: Optional[str] = None

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("json", "text"):
            raise ValueError(f"logging.format must be json/text, got '{v}'")
        return v


class PaperDBConfig(BaseModel):
    """Root model for paperdb.yaml."""
    name: str = "paperdb"
    directory: str = ".paperdb"

    identity: IdentityConfig = IdentityConfig()
    logstore: LogStoreConfig = LogStoreConfig()
    blobstore: BlobStoreConfig = BlobStoreConfig()
    access: AccessConfig = AccessConfig()
    logging: LoggingConfig = LoggingConfig()

    def resolve_path(self, path: str) -> Path:
        """Resolve a config path relative to the data directory."""
        p = Path(path)
        if p.is_absolute():
            return p
        return Path(self.directory) / p

    def logstore_url(self) -> str:
        """SQLAlchemy URL for the sql backend (defaults to a sqlite file)."""
        if self.logstore.url:
            return self.logstore.url
        return f"sqlite:///{self.resolve_path('logstore.db')}"


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[PaperDBConfig] = None


def _find_config_file() -> Optional[Path]:
    """Find paperdb.yaml via $PAPERDB_CONFIG or by walking up from CWD."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    current = Path.cwd()
    for parent in [current, *current.parents]:
        candidate = parent / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Optional[str] = None) -> PaperDBConfig:
    """
    Load and validate paperdb.yaml.

    Args:
        config_path: Explicit path to paperdb.yaml. If None, auto-discovers.

    Returns:
        Validated PaperDBConfig instance (defaults if no file exists).
    """
    global _config

    path = Path(config_path) if config_path else _find_config_file()
    if path is None or not path.exists():
        _config = PaperDBConfig()
        return _config

    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise PaperDBConfigError(f"Cannot parse {path}: {e}", object_ref=str(path))

    # Allow the whole document to be nested under a top-level "paperdb:" key
    data = raw.get("paperdb", raw)

    try:
        _config = PaperDBConfig(**data)
    except ValidationError as e:
        raise PaperDBConfigError(f"Invalid configuration in {path}: {e}", object_ref=str(path))
    return _config


def get_config() -> PaperDBConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config
