# ==============================================================================
# FILE: netflowmon/core/config.py
# PURPOSE: Runtime settings for the monitor and the web server.
# ==============================================================================
import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional

BACKENDS = ("psutil", "netstat", "simulated")
ENV_PREFIX = "NETFLOWMON_"


@dataclass(frozen=True)
class MonitorConfig:
    # Where connection and process snapshots come from
    backend: str = "psutil"

    # Timer periods in seconds
    poll_interval: float = 2.0
    activity_interval: float = 1.0
    stats_interval: float = 2.0

    # Cap on each telemetry buffer
    max_items: int = 10_000

    # Stochastic traffic estimate for single-process mode
    activity_enabled: bool = True
    activity_probability: float = 0.3

    # Watchdogs for blocking OS calls
    snapshot_timeout: float = 10.0
    dns_timeout: float = 3.0

    # Reverse-DNS cache capacity (None = unbounded)
    dns_cache_size: Optional[int] = 4096

    # Start in single-process mode for this pid
    target_pid: Optional[int] = None

    host: str = "127.0.0.1"
    port: int = 8000

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend '{self.backend}'. Choose one of: {', '.join(BACKENDS)}")
        for name in ("poll_interval", "activity_interval", "stats_interval",
                     "snapshot_timeout", "dns_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.max_items < 1:
            raise ValueError("max_items must be at least 1")
        if not 0.0 <= self.activity_probability <= 1.0:
            raise ValueError("activity_probability must be between 0 and 1")
        if self.dns_cache_size is not None and self.dns_cache_size < 1:
            raise ValueError("dns_cache_size must be at least 1")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MonitorConfig":
        """Builds a config from NETFLOWMON_* variables, e.g. NETFLOWMON_POLL_INTERVAL=5."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            overrides[f.name] = _coerce(f.name, raw)
        return cls(**overrides)

    def with_overrides(self, **changes) -> "MonitorConfig":
        """Returns a copy with every non-None keyword applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


_FLOATS = {"poll_interval", "activity_interval", "stats_interval",
           "activity_probability", "snapshot_timeout", "dns_timeout"}
_INTS = {"max_items", "port"}
_OPTIONAL_INTS = {"dns_cache_size", "target_pid"}


def _coerce(name: str, raw: str):
    try:
        if name in _FLOATS:
            return float(raw)
        if name in _INTS:
            return int(raw)
        if name in _OPTIONAL_INTS:
            return None if raw.lower() in ("none", "off") else int(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from None
    if name == "activity_enabled":
        return raw.lower() in ("1", "true", "yes", "on")
    return raw
