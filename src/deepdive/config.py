"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (DEEPDIVE__SERVER__ENVIRONMENT=production)
  2. deepdive.yaml          (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. Every field except the Gemini API key has a
usable default, and the key is only required when the backend is served.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("deepdive")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")

DEFAULT_SUSPICIOUS_DOMAINS: tuple[str, ...] = (
    "example.com",
    "placeholder.com",
    "yoursite.com",
    "website.com",
    "test.com",
    "sample.com",
)
DEFAULT_REDIRECT_MARKERS: tuple[str, ...] = (
    "vertexaisearch.cloud.google.com/grounding-api-redirect",
)


def _find_config_file() -> str | None:
    """Return the path of the first deepdive.yaml found, or None."""
    candidates = [
        Path("deepdive.yaml"),
        Path(platformdirs.user_config_dir("deepdive")) / "deepdive.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3001
    environment: Literal["development", "production"] = "development"
    # Restricts CORS to a single chrome-extension:// origin in production
    allowed_extension_id: str | None = None
    max_body_bytes: int = 1024 * 1024


class GeminiSettings(BaseModel):
    api_key: str = ""
    model: str = "gemini-2.0-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout_seconds: float = 60.0


class RateLimitSettings(BaseModel):
    window_seconds: float = 60.0
    # None picks the environment default (10 in production, 30 in development)
    max_requests: int | None = None
    sweep_interval_seconds: float = 60.0


class CacheSettings(BaseModel):
    ttl_hours: int = 24
    db_path: str = _DEFAULT_DB_PATH


class ExtractionSettings(BaseModel):
    min_text_length: int = 100
    max_text_length: int = 60_000
    min_paragraph_length: int = 40


class SourceSettings(BaseModel):
    """Heuristics for judging related-source URLs.

    Neither list is authoritative; both are expected to grow.
    """

    suspicious_domains: list[str] = list(DEFAULT_SUSPICIOUS_DOMAINS)
    redirect_markers: list[str] = list(DEFAULT_REDIRECT_MARKERS)


class ClientSettings(BaseModel):
    backend_url: str = "http://localhost:3001"
    timeout_seconds: float = 90.0
    max_retries: int = 0
    retry_base_delay_seconds: float = 1.0


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: DEEPDIVE__SERVER__PORT=9090
        env_prefix="DEEPDIVE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    gemini: GeminiSettings = GeminiSettings()
    rate_limit: RateLimitSettings = RateLimitSettings()
    cache: CacheSettings = CacheSettings()
    extraction: ExtractionSettings = ExtractionSettings()
    sources: SourceSettings = SourceSettings()
    client: ClientSettings = ClientSettings()
    logging: LoggingSettings = LoggingSettings()

    @property
    def rate_limit_max_requests(self) -> int:
        if self.rate_limit.max_requests is not None:
            return self.rate_limit.max_requests
        return 10 if self.server.environment == "production" else 30

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
