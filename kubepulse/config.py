"""Environment-driven configuration loading.

Every setting is read from a ``KUBEPULSE_*`` variable.  Integers outside
their allowed range are clamped; integers that do not parse fall back to the
default.  Enumerated string settings are validated and raise ``ValueError``.
"""

from __future__ import annotations

import os

from kubepulse.models.config import (
    APIConfig,
    IncidentConfig,
    KubePulseConfig,
    LogConfig,
    PodIndexConfig,
)
from kubepulse.observability.logging import is_valid_format

_PREFIX = "KUBEPULSE_"

_VALID_LOG_LEVELS: frozenset[str] = frozenset({"debug", "info", "warning", "error"})


def _env(name: str, default: str = "") -> str:
    return os.environ.get(_PREFIX + name, default)


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _load_log() -> LogConfig:
    level = _env("LOG_LEVEL", "info").strip().lower()
    if level not in _VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level!r} (expected one of {sorted(_VALID_LOG_LEVELS)})")
    fmt = _env("LOG_FORMAT", "json").strip().lower()
    if not is_valid_format(fmt):
        raise ValueError(f"Invalid log format: {fmt!r} (expected json or console)")
    return LogConfig(level=level, format=fmt)


def load_config() -> KubePulseConfig:
    """Build a :class:`KubePulseConfig` from the process environment.

    Raises:
        ValueError: on an unknown log level or log format.
    """
    return KubePulseConfig(
        log=_load_log(),
        api=APIConfig(
            port=_env_int("API_PORT", 8080, 1024, 65535),
            host=_env("API_HOST", "0.0.0.0") or "0.0.0.0",
        ),
        incident=IncidentConfig(
            recent_changes_minutes=_env_int("RECENT_CHANGES_MINUTES", 15, 1, 1440),
            events_window_minutes=_env_int("EVENTS_WINDOW_MINUTES", 30, 1, 1440),
        ),
        pod_index=PodIndexConfig(
            namespace=_env("NAMESPACE").strip(),
            debounce_ms=_env_int("POD_INDEX_DEBOUNCE_MS", 300, 50, 5000),
            age_refresh_seconds=_env_int("POD_INDEX_AGE_REFRESH_SECONDS", 30, 5, 600),
        ),
    )
