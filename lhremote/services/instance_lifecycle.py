"""
Instance lifecycle: idempotent start, crash recovery and port polling.

LinkedHelper instances are full Electron apps that load LinkedIn on
startup, so the instance CDP port can take 30+ seconds to appear after the
launcher reports success.

The launcher is borrowed for the duration of one call; nothing here holds
a connection or a background task.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from ..browser.instance_discovery import discover_instance_port
from ..config import DEFAULT_TIMINGS, Timings
from ..infra.timing import SYSTEM_CLOCK, Clock, Deadline
from .errors import StartInstanceError

logger = logging.getLogger(__name__)

PortDiscovery = Callable[[int], Optional[int]]


@dataclass(frozen=True)
class Started:
    port: int
    status: str = field(default="started", init=False)


@dataclass(frozen=True)
class AlreadyRunning:
    port: int
    status: str = field(default="already_running", init=False)


@dataclass(frozen=True)
class TimedOut:
    status: str = field(default="timeout", init=False)


StartInstanceOutcome = Union[Started, AlreadyRunning, TimedOut]


def start_instance_with_recovery(
    launcher,
    account_id: int,
    launcher_port: int,
    *,
    discover_port: PortDiscovery = discover_instance_port,
    timings: Optional[Timings] = None,
    clock: Optional[Clock] = None,
) -> StartInstanceOutcome:
    """
    Start a LinkedHelper instance, tolerating one that is already up.

    - Launcher says "already running" and the port answers: AlreadyRunning.
    - Launcher says "already running" but no port is found (stale state
      after a crash): stop, wait, start again. A second failure propagates.
    - Any other start failure propagates.
    - After a start, the port is polled until it answers or time runs out.

    Args:
        launcher: Object with start_instance(account_id) and stop_instance(account_id)
        account_id: LinkedIn account to start
        launcher_port: Launcher CDP port used to locate the instance process
        discover_port: Port discovery collaborator
    """
    timings = timings or DEFAULT_TIMINGS
    clock = clock or SYSTEM_CLOCK

    try:
        launcher.start_instance(account_id)
    except StartInstanceError as e:
        if not e.already_running:
            raise

        existing_port = discover_port(launcher_port)
        if existing_port is not None:
            logger.info(f"Instance for account {account_id} already running on port {existing_port}")
            return AlreadyRunning(port=existing_port)

        logger.warning(
            f"Launcher reports account {account_id} running but no instance port answers; "
            f"restarting after stale state"
        )
        launcher.stop_instance(account_id)
        clock.sleep(timings.crash_recovery_delay)
        launcher.start_instance(account_id)

    port = wait_for_instance_port(launcher_port, discover_port=discover_port, timings=timings, clock=clock)
    if port is None:
        logger.warning(
            f"Instance for account {account_id} did not expose a CDP port "
            f"within {timings.port_discovery_timeout:g}s"
        )
        return TimedOut()

    logger.info(f"Instance for account {account_id} started on port {port}")
    return Started(port=port)


def wait_for_instance_port(
    launcher_port: int,
    *,
    discover_port: PortDiscovery = discover_instance_port,
    timings: Optional[Timings] = None,
    clock: Optional[Clock] = None,
) -> Optional[int]:
    """
    Poll for the instance CDP port until it answers or the deadline passes.

    discover_port verifies candidates against `/json/list`, so a returned
    port is a working CDP port.
    """
    timings = timings or DEFAULT_TIMINGS
    clock = clock or SYSTEM_CLOCK
    deadline = Deadline.after(timings.port_discovery_timeout, clock)

    while not deadline.expired():
        port = discover_port(launcher_port)
        if port is not None:
            return port
        clock.sleep(timings.poll_interval)

    return None


def wait_for_instance_shutdown(
    launcher_port: int,
    *,
    discover_port: PortDiscovery = discover_instance_port,
    timings: Optional[Timings] = None,
    clock: Optional[Clock] = None,
):
    """
    Poll until no instance CDP port is discoverable, or the deadline passes.

    Use after stop_instance() so the process has exited before a new start.
    Returns either way.
    """
    timings = timings or DEFAULT_TIMINGS
    clock = clock or SYSTEM_CLOCK
    deadline = Deadline.after(timings.shutdown_timeout, clock)

    while not deadline.expired():
        if discover_port(launcher_port) is None:
            return
        clock.sleep(timings.poll_interval)

    logger.warning(f"Instance CDP port still answering after {timings.shutdown_timeout:g}s")
