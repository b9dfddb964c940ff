"""
Coastal Dashboard - Configuration
Backend origin resolution and retry/timeout settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# ============================================================================
# BACKEND ORIGIN
# ============================================================================

# Checked in order; first non-empty value wins.
BACKEND_URL_ENV_VARS = (
    "BACKEND_URL",
    "NEXT_PUBLIC_BACKEND_URL",
    "API_BASE_URL",
)
DEFAULT_BACKEND_URL = "http://localhost:8000"

# ============================================================================
# RETRY / TIMEOUT DEFAULTS
# ============================================================================

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE_S = 0.6
DEFAULT_REQUEST_TIMEOUT_S = 8.0
DEFAULT_WARMUP_TIMEOUT_S = 4.0

# ============================================================================
# SITE
# ============================================================================

DEFAULT_TIMEZONE = "America/Sao_Paulo"
DEFAULT_SITE_NAME = "Leme - Rio de Janeiro"


@dataclass(frozen=True)
class BackendConfig:
    """Immutable settings read once at startup."""
    base_url: str = DEFAULT_BACKEND_URL
    timezone: str = DEFAULT_TIMEZONE
    proxy_max_attempts: int = DEFAULT_MAX_ATTEMPTS
    fetch_max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base_s: float = DEFAULT_BACKOFF_BASE_S
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    warmup_timeout_s: float = DEFAULT_WARMUP_TIMEOUT_S
    site_name: str = DEFAULT_SITE_NAME

    @property
    def tzinfo(self) -> ZoneInfo:
        return get_zone(self.timezone)


def get_zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    return value if value >= 1 else default


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        return default
    return value if value >= 0 else default


def resolve_backend_url(
    environ: Optional[Mapping[str, str]] = None,
    candidates: Sequence[str] = BACKEND_URL_ENV_VARS,
) -> str:
    """Return the first non-empty candidate variable, else the local default."""
    env = os.environ if environ is None else environ
    for name in candidates:
        value = (env.get(name) or "").strip()
        if value:
            return value
    return DEFAULT_BACKEND_URL


def load_backend_config(environ: Optional[Mapping[str, str]] = None) -> BackendConfig:
    """
    Build the process-wide configuration.

    Callers are expected to have run `load_dotenv()` beforehand so that
    values from a local .env file are visible in os.environ.
    """
    env = os.environ if environ is None else environ
    return BackendConfig(
        base_url=resolve_backend_url(env),
        timezone=(env.get("DASHBOARD_TZ") or "").strip() or DEFAULT_TIMEZONE,
        proxy_max_attempts=_env_int(env, "PROXY_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        fetch_max_attempts=_env_int(env, "FETCH_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        backoff_base_s=_env_float(env, "BACKOFF_BASE_S", DEFAULT_BACKOFF_BASE_S),
        request_timeout_s=_env_float(env, "REQUEST_TIMEOUT_S", DEFAULT_REQUEST_TIMEOUT_S),
        warmup_timeout_s=_env_float(env, "WARMUP_TIMEOUT_S", DEFAULT_WARMUP_TIMEOUT_S),
        site_name=(env.get("SITE_NAME") or "").strip() or DEFAULT_SITE_NAME,
    )
