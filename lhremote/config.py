"""
lhremote Configuration
======================
Connection defaults and the timing budget of every polling loop.

All durations are in seconds. DEFAULT_TIMINGS never reads the environment.
To take overrides from environment variables, build Timings.from_env() and
pass it explicitly:

    InstanceService(port, timings=Timings.from_env())

  LHREMOTE_POLL_INTERVAL            interval between discovery polls
  LHREMOTE_CONNECT_TIMEOUT          wait for both instance targets
  LHREMOTE_PORT_DISCOVERY_TIMEOUT   wait for the instance CDP port
  LHREMOTE_SHUTDOWN_TIMEOUT         wait for the instance CDP port to vanish
  LHREMOTE_CRASH_RECOVERY_DELAY     pause between stop and restart
  LHREMOTE_REQUEST_TIMEOUT          per-call CDP request timeout
"""

import logging
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

# ─── Connection defaults ─────────────────────────────────────────────
DEFAULT_CDP_PORT = 9222         # LinkedHelper launcher debugging port
DEFAULT_HOST = "127.0.0.1"

# ─── Timing defaults ─────────────────────────────────────────────────
POLL_INTERVAL = 1.0             # every discovery loop
CONNECT_TIMEOUT = 30.0          # instance targets appear after LinkedIn loads
PORT_DISCOVERY_TIMEOUT = 45.0   # Electron instance boot can exceed 30s
SHUTDOWN_TIMEOUT = 15.0
CRASH_RECOVERY_DELAY = 2.0
REQUEST_TIMEOUT = 30.0

ENV_PREFIX = "LHREMOTE_"


@dataclass(frozen=True)
class Timings:
    """Timing budget shared by the session and the lifecycle helpers."""
    poll_interval: float = POLL_INTERVAL
    connect_timeout: float = CONNECT_TIMEOUT
    port_discovery_timeout: float = PORT_DISCOVERY_TIMEOUT
    shutdown_timeout: float = SHUTDOWN_TIMEOUT
    crash_recovery_delay: float = CRASH_RECOVERY_DELAY
    request_timeout: float = REQUEST_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Timings":
        """Build timings from LHREMOTE_* variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            raw = env.get(key)
            if raw is None or raw.strip() == "":
                continue
            try:
                value = float(raw)
            except ValueError:
                logger.warning(f"Ignoring {key}={raw!r}: not a number")
                continue
            if value < 0:
                logger.warning(f"Ignoring {key}={raw!r}: must not be negative")
                continue
            overrides[f.name] = value
        return cls(**overrides)


DEFAULT_TIMINGS = Timings()
