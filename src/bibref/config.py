"""Configuration loading for bibref."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path


@dataclass
class Settings:
    specref_url: str
    crossref_url: str
    cache_path: Path
    cache_ttl: float
    http_timeout: float
    offline: bool
    search_url: str
    crossref_mailto: str | None = None


DEFAULT_SPECREF_URL = "https://api.specref.org/bibrefs"
DEFAULT_CROSSREF_URL = "https://api.crossref.org/works"
DEFAULT_SEARCH_URL = "https://www.specref.org?q={key}"
DEFAULT_CACHE_PATH = Path.home() / ".cache" / "bibref" / "biblio.sqlite3"

# Specref regenerates its data hourly, records never outlive that.
DEFAULT_CACHE_TTL = 60 * 60


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}.") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {raw!r}.")
    return value


def _flag_env(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> Settings:
    """Load configuration from environment variables."""
    cache_path = os.getenv("BIBREF_CACHE_PATH")
    return Settings(
        specref_url=os.getenv("BIBREF_SPECREF_URL", DEFAULT_SPECREF_URL),
        crossref_url=os.getenv("BIBREF_CROSSREF_URL", DEFAULT_CROSSREF_URL),
        cache_path=Path(cache_path).expanduser() if cache_path else DEFAULT_CACHE_PATH,
        cache_ttl=_float_env("BIBREF_CACHE_TTL", DEFAULT_CACHE_TTL),
        http_timeout=_float_env("BIBREF_HTTP_TIMEOUT", 15.0),
        offline=_flag_env("BIBREF_OFFLINE"),
        search_url=os.getenv("BIBREF_SEARCH_URL", DEFAULT_SEARCH_URL),
        crossref_mailto=os.getenv("CROSSREF_MAILTO") or None,
    )
