"""Runtime settings for Ruralink.

Everything is read from environment variables. If ``python-dotenv`` is
installed, a ``.env`` file (path override: ``RURALINK_DOTENV``) is loaded on
import so the CLI and the scripts share one configuration.

RURALINK_SEARCH_RADIUS_KM (float, default 15)
    Radius used by the "near me" job filter.
RURALINK_PROFILE_TIMEOUT (float seconds, default 5)
    How long login waits for the profile store before asking for a role.
RURALINK_OTP_TTL_SECONDS (int, default 300)
RURALINK_OTP_MAX_ATTEMPTS (int, default 5)
    A code expires after the TTL or after that many wrong guesses.
RURALINK_JWT_SECRET / RURALINK_JWT_EXPIRE_MINUTES
    Session tokens issued by the local identity backend.
RURALINK_STATE_PATH
    JSON file used as local device storage (default ~/.ruralink/state.json).
RURALINK_CATEGORIES_FILE
    Optional YAML list replacing the built-in trade categories.
RURALINK_BACKEND ("local" | "supabase"), SUPABASE_URL, SUPABASE_KEY,
RURALINK_USERNAME_DOMAIN, RURALINK_GEOCODE_TIMEOUT
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import yaml

try:
    from dotenv import load_dotenv  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    load_dotenv = None  # type: ignore

if load_dotenv is not None:
    _ = load_dotenv(dotenv_path=os.getenv("RURALINK_DOTENV", ".env"))

LOGGER = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    "Painter",
    "Cleaner",
    "Helper",
    "Gardener",
    "Cook",
    "Driver",
    "Electrician",
    "Plumber",
    "Carpenter",
    "Security Guard",
)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("ignoring non-numeric %s=%r", name, raw)
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning("ignoring non-integer %s=%r", name, raw)
        return default


def load_categories(path: Union[str, Path, None] = None) -> tuple[str, ...]:
    """Return the trade categories, optionally replaced by a YAML list file."""
    path = path or os.getenv("RURALINK_CATEGORIES_FILE")
    if not path:
        return DEFAULT_CATEGORIES
    path = Path(path)
    if not path.exists():
        LOGGER.warning("categories file %s not found; using defaults", path)
        return DEFAULT_CATEGORIES
    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if isinstance(data, dict):
        data = data.get("categories")
    if not isinstance(data, list):
        return DEFAULT_CATEGORIES
    cleaned = tuple(str(c).strip() for c in data if str(c).strip())
    return cleaned or DEFAULT_CATEGORIES


def _default_state_path() -> Path:
    return Path.home() / ".ruralink" / "state.json"


@dataclass
class Settings:
    search_radius_km: float = 15.0
    profile_timeout: float = 5.0
    otp_ttl_seconds: int = 300
    otp_max_attempts: int = 5
    jwt_secret: str = "ruralink-dev-secret"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7
    state_path: Path = field(default_factory=_default_state_path)
    categories: tuple[str, ...] = DEFAULT_CATEGORIES
    backend: str = "local"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    username_domain: str = "kaaryasetu.app"
    geocode_timeout: float = 5.0


def load_settings() -> Settings:
    state_path = os.getenv("RURALINK_STATE_PATH")
    return Settings(
        search_radius_km=_float_env("RURALINK_SEARCH_RADIUS_KM", 15.0),
        profile_timeout=_float_env("RURALINK_PROFILE_TIMEOUT", 5.0),
        otp_ttl_seconds=_int_env("RURALINK_OTP_TTL_SECONDS", 300),
        otp_max_attempts=_int_env("RURALINK_OTP_MAX_ATTEMPTS", 5),
        jwt_secret=os.getenv("RURALINK_JWT_SECRET", "ruralink-dev-secret"),
        jwt_expire_minutes=_int_env("RURALINK_JWT_EXPIRE_MINUTES", 60 * 24 * 7),
        state_path=Path(state_path) if state_path else _default_state_path(),
        categories=load_categories(),
        backend=os.getenv("RURALINK_BACKEND", "local").lower(),
        supabase_url=os.getenv("SUPABASE_URL") or None,
        supabase_key=os.getenv("SUPABASE_KEY") or None,
        username_domain=os.getenv("RURALINK_USERNAME_DOMAIN", "kaaryasetu.app"),
        geocode_timeout=_float_env("RURALINK_GEOCODE_TIMEOUT", 5.0),
    )


# Module-level settings (tests may construct their own Settings instead)
SETTINGS: Settings = load_settings()
