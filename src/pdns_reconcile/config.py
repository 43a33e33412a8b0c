"""Environment-driven configuration loader."""

from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlsplit

from dotenv import load_dotenv

from .models import MAX_TTL, ConfigError

LOG_FORMATS = {"text", "json"}


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff settings."""

    max_attempts: int = 4
    base_delay: float = 0.5
    max_delay: float = 30.0
    backoff_factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Return the pause after the given failed attempt (1-based)."""
        return min(self.base_delay * self.backoff_factor ** (attempt - 1), self.max_delay)


@dataclass(frozen=True)
class AppConfig:
    """Application-wide configuration values."""

    api_url: str
    api_key: str
    server_id: str = "localhost"
    request_timeout: float = 10.0
    retry: RetryPolicy = RetryPolicy()
    batch_size: int = 50
    max_concurrency: int = 4
    default_record_ttl: int = 3600
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def server_url(self) -> str:
        """Return the API root for the configured server."""
        return f"{self.api_url.rstrip('/')}/api/v1/servers/{self.server_id}"


def verify_api_url(value: str) -> str:
    """Accept only a bare http(s) origin: no credentials, path, query or fragment."""
    try:
        parts = urlsplit(value.strip())
    except ValueError as exc:
        raise ConfigError(f"PDNS_API_URL '{value}' is malformed: {exc}") from exc
    if parts.scheme not in {"http", "https"}:
        raise ConfigError(f"PDNS_API_URL '{value}' must use http or https, not '{parts.scheme}'")
    if not parts.hostname:
        raise ConfigError(f"PDNS_API_URL '{value}' has no host")
    if parts.username or parts.password:
        raise ConfigError(f"PDNS_API_URL '{value}' must not embed credentials")
    if parts.path not in {"", "/"}:
        raise ConfigError(f"PDNS_API_URL '{value}' must not contain a path ('{parts.path}')")
    if parts.query:
        raise ConfigError(f"PDNS_API_URL '{value}' must not contain a query ('{parts.query}')")
    if parts.fragment:
        raise ConfigError(f"PDNS_API_URL '{value}' must not contain a fragment ('{parts.fragment}')")
    return value.strip()


def _parse_int(name: str, default: str, minimum: int = 1, maximum: int | None = None) -> int:
    """Read a bounded integer from the environment."""
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got '{raw}'.") from exc
    if value < minimum or (maximum is not None and value > maximum):
        raise ConfigError(f"{name} is out of range: {value}.")
    return value


def _parse_float(name: str, default: str, minimum: float = 0.0) -> float:
    """Read a non-negative float from the environment."""
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got '{raw}'.") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}, got {value}.")
    return value


def load_config() -> AppConfig:
    """Load configuration values from the environment (and .env)."""
    load_dotenv()
    api_key = os.getenv("PDNS_API_KEY", "")
    if not api_key:
        raise ConfigError("PDNS_API_KEY is required.")

    log_format = os.getenv("LOG_FORMAT", "text").lower()
    if log_format not in LOG_FORMATS:
        raise ConfigError("LOG_FORMAT must be either 'text' or 'json'.")

    retry = RetryPolicy(
        max_attempts=_parse_int("RETRY_MAX_ATTEMPTS", "4"),
        base_delay=_parse_float("RETRY_BASE_DELAY", "0.5"),
        max_delay=_parse_float("RETRY_MAX_DELAY", "30"),
        backoff_factor=_parse_float("RETRY_BACKOFF_FACTOR", "2", minimum=1.0),
    )

    config = AppConfig(
        api_url=verify_api_url(os.getenv("PDNS_API_URL", "http://127.0.0.1:8081/")),
        api_key=api_key,
        server_id=os.getenv("PDNS_SERVER_ID", "localhost"),
        request_timeout=_parse_float("REQUEST_TIMEOUT", "10", minimum=0.001),
        retry=retry,
        batch_size=_parse_int("BATCH_SIZE", "50"),
        max_concurrency=_parse_int("MAX_CONCURRENCY", "4"),
        default_record_ttl=_parse_int("DEFAULT_RECORD_TTL", "3600", maximum=MAX_TTL),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=log_format,
    )
    return config
