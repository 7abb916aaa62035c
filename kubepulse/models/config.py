"""Configuration models for kubepulse.

Populated by :func:`kubepulse.config.load_config` from ``KUBEPULSE_*``
environment variables.  Field bounds mirror the clamping applied by the
loader so a hand-built config is held to the same limits.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class LogConfig(BaseModel):
    level: str = "info"
    format: str = "json"


class APIConfig(BaseModel):
    port: int = Field(default=8080, ge=1024, le=65535)
    host: str = "0.0.0.0"


class IncidentConfig(BaseModel):
    """Lookback windows used by the incident summary."""

    recent_changes_minutes: int = Field(default=15, ge=1, le=1440)
    events_window_minutes: int = Field(default=30, ge=1, le=1440)


class PodIndexConfig(BaseModel):
    """Live pod index tuning.

    ``namespace`` empty means no pod watch is started at boot; one can be
    started later through the REST API.
    """

    namespace: str = ""
    debounce_ms: int = Field(default=300, ge=50, le=5000)
    age_refresh_seconds: int = Field(default=30, ge=5, le=600)

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0


class KubePulseConfig(BaseModel):
    log: LogConfig = Field(default_factory=LogConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    incident: IncidentConfig = Field(default_factory=IncidentConfig)
    pod_index: PodIndexConfig = Field(default_factory=PodIndexConfig)
