"""
InfluxDB connection settings for the durable earnings store.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(slots=True)
class InfluxConfig:
    """Configuration required to connect to InfluxDB."""

    url: str = "http://localhost:8086"
    token: str | None = None
    org: str = "stocksim"
    bucket: str = "earnings"
    timeout_ms: int = 10_000

    @staticmethod
    def from_env() -> "InfluxConfig":
        # Environment variables win over config.py, which wins over the defaults.
        try:
            import config as config_module  # type: ignore
        except ModuleNotFoundError:
            config_module = None  # type: ignore

        defaults = InfluxConfig()
        url = getattr(config_module, "INFLUX_URL", defaults.url)
        org = getattr(config_module, "INFLUX_ORG", defaults.org)
        bucket = getattr(config_module, "INFLUX_BUCKET", defaults.bucket)
        token = getattr(config_module, "INFLUX_TOKEN", defaults.token)
        timeout_ms = getattr(config_module, "INFLUX_TIMEOUT_MS", defaults.timeout_ms)

        token = os.getenv("INFLUX_TOKEN") or token
        if token and str(token).upper().startswith("REPLACE"):
            token = None
        try:
            timeout_ms = int(os.getenv("INFLUX_TIMEOUT_MS") or timeout_ms)
        except (TypeError, ValueError):
            timeout_ms = defaults.timeout_ms

        return InfluxConfig(
            url=os.getenv("INFLUX_URL") or url,
            token=token,
            org=os.getenv("INFLUX_ORG") or org,
            bucket=os.getenv("INFLUX_BUCKET") or bucket,
            timeout_ms=timeout_ms,
        )
