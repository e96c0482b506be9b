"""roomsync configuration.

Loads settings from two YAML files:
  * roomsync.settings.yaml  - non-secret configuration
  * roomsync.secrets.yaml   - API keys (never committed)

Both paths can be overridden with ROOMSYNC_SETTINGS_FILE and
ROOMSYNC_SECRETS_FILE. Missing files fall back to the model defaults.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("roomsync.settings.yaml")
SECRETS_FILE  = Path("roomsync.secrets.yaml")

SETTINGS_ENV = "ROOMSYNC_SETTINGS_FILE"
SECRETS_ENV  = "ROOMSYNC_SECRETS_FILE"


def _resolve_path(env_var: str, default: Path) -> Path:
    override = os.environ.get(env_var)
    return Path(override) if override else default


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class OpenAISecrets(BaseModel):
    api_key: Optional[str] = None


class AnthropicSecrets(BaseModel):
    api_key: Optional[str] = None


class Secrets(BaseModel):
    openai:    OpenAISecrets    = Field(default_factory=OpenAISecrets)
    anthropic: AnthropicSecrets = Field(default_factory=AnthropicSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 8000
    allowed_origins: list = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class SyncSettings(BaseModel):
    """Timers and limits used by the client-side sync engines."""
    heartbeat_interval_seconds:  float = 30.0
    typing_idle_seconds:         float = 2.0
    max_upload_bytes:            int   = 10 * 1024 * 1024
    assistant_context_size:      int   = 10
    correlate_optimistic_writes: bool  = False

    @field_validator("heartbeat_interval_seconds", "typing_idle_seconds")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("interval must be positive")
        return value


class StoreSettings(BaseModel):
    backend:     Literal["memory", "duckdb"] = "memory"
    duckdb_path: str                         = "roomsync.duckdb"


class StorageSettings(BaseModel):
    upload_dir: str = "uploads"
    base_url:   str = "/storage"
    bucket:     str = "chat-files"


class AISettings(BaseModel):
    enabled:    bool                                    = True
    provider:   Literal["openai", "anthropic", "function"] = "openai"
    model:      Optional[str]                           = None
    base_url:   Optional[str]                           = None
    max_tokens: int                                     = 800


class RoomsSettings(BaseModel):
    expiry_hours:               int = 24
    create_limit_per_hour:      int = 10
    password_attempts_per_min:  int = 5
    chat_ai_requests_per_min:   int = 20
    max_ai_message_chars:       int = 2000


class IdentitySettings(BaseModel):
    path: str = "~/.roomsync/identity.json"


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    sync:     SyncSettings     = Field(default_factory=SyncSettings)
    store:    StoreSettings    = Field(default_factory=StoreSettings)
    storage:  StorageSettings  = Field(default_factory=StorageSettings)
    ai:       AISettings       = Field(default_factory=AISettings)
    rooms:    RoomsSettings    = Field(default_factory=RoomsSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(settings_path or _resolve_path(SETTINGS_ENV, SETTINGS_FILE))
    secrets_data  = _load_yaml(secrets_path or _resolve_path(SECRETS_ENV, SECRETS_FILE))

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (store=%s, ai.enabled=%s, ai.provider=%s)",
        app_settings.store.backend,
        app_settings.ai.enabled,
        app_settings.ai.provider,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def reset_config() -> None:
    """Forget the cached settings (for testing)."""
    global _config
    _config = None
