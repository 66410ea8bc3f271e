"""Connectly application configuration.

Loads settings from two YAML files:
  * connectly.settings.yaml: non-secret configuration
  * connectly.secrets.yaml: secrets (never committed)

When the secrets file does not provide a JWT secret, the ``JWT_SECRET``
environment variable is used instead.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("connectly.settings.yaml")
SECRETS_FILE  = Path("connectly.secrets.yaml")

DEFAULT_ALLOWED_MIME_TYPES = [
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/gif",
    "application/pdf",
    "text/plain",
    "application/zip",
    "application/x-zip-compressed",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
]


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: Optional[str] = None


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class DatabaseSettings(BaseModel):
    path: str = "connectly.duckdb"


class AuthSettings(BaseModel):
    algorithm:      str = "HS256"
    leeway_seconds: int = 5
    user_id_claim:  str = "userId"


class AttachmentSettings(BaseModel):
    """Limits applied to attachment descriptors handed to the engine."""
    max_size_bytes:     int       = 10 * 1024 * 1024
    allowed_mime_types: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES)
    )

    @field_validator("max_size_bytes")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_size_bytes must be positive")
        return value


class AppConfig(BaseModel):
    server:      ServerSettings     = Field(default_factory=ServerSettings)
    logging:     LoggingSettings    = Field(default_factory=LoggingSettings)
    database:    DatabaseSettings   = Field(default_factory=DatabaseSettings)
    auth:        AuthSettings       = Field(default_factory=AuthSettings)
    attachments: AttachmentSettings = Field(default_factory=AttachmentSettings)
    secrets:     Secrets            = Field(default_factory=Secrets)

    @property
    def jwt_secret(self) -> Optional[str]:
        return self.secrets.jwt.secret_key or os.environ.get("JWT_SECRET")


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def _resolve_database_path(config: AppConfig, settings_path: Path) -> None:
    raw = config.database.path
    if raw == ":memory:" or Path(raw).is_absolute():
        return
    config.database.path = str(settings_path.resolve().parent / raw)


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_path = Path(settings_path) if settings_path else SETTINGS_FILE
    secrets_path = (
        Path(secrets_path) if secrets_path
        else settings_path.with_name(SECRETS_FILE.name)
    )

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    _resolve_database_path(config, settings_path)

    if not config.jwt_secret:
        logger.warning("No JWT secret configured; every connection will be rejected")

    logger.info(
        "Settings loaded (server=%s:%s, database=%s)",
        config.server.host,
        config.server.port,
        config.database.path,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    global _config
    _config = None
