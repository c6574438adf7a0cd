"""Engine parameters and logging setup."""

import logging
from typing import Mapping, Optional

from pydantic import Field, PositiveFloat, PositiveInt, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

ENV_PREFIX = "TRAFFIC_"


class EngineConfig(BaseSettings):
    """Engine defaults, overridable through ``TRAFFIC_<FIELD>`` variables.

    ``TRAFFIC_MAX_LIVE_SNAPSHOTS=none`` removes the snapshot limit.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # ---------- Traffic model ----------
    busy_hour_factor: float = Field(default=0.17, gt=0, le=1)
    max_circuits: PositiveInt = 10000
    max_live_snapshots: Optional[PositiveInt] = 2

    # ---------- Simulation ----------
    simulation_duration_ms: PositiveInt = 20000
    call_duration_s: PositiveFloat = 180.0
    metrics_interval_ms: PositiveInt = 2000
    metrics_throttle_ms: int = Field(default=500, ge=0)
    include_header_overhead: bool = True
    cap_arrivals_at_expected_count: bool = True

    # ---------- Explanation proxy ----------
    proxy_url: str = "http://localhost:3000/api/gemini"
    upstream_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    upstream_timeout_s: PositiveFloat = 30.0

    @field_validator("max_live_snapshots", mode="before")
    @classmethod
    def _unbounded_snapshots(cls, value):
        if isinstance(value, str) and value.strip().lower() in ("", "none"):
            return None
        return value

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Build a config from ``environ``, by default the process environment.

        Raises :class:`pydantic.ValidationError` (a ``ValueError``) for values
        that are malformed or out of range.
        """
        if environ is None:
            return cls()
        overrides = {}
        for key, raw in environ.items():
            if not key.upper().startswith(ENV_PREFIX):
                continue
            name = key[len(ENV_PREFIX):].lower()
            if name in cls.model_fields:
                overrides[name] = raw.strip()
        return cls(**overrides)


def configure_logging(level=logging.INFO) -> None:
    """Install a stream handler with the project log format."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(level=level, format=LOG_FORMAT)
