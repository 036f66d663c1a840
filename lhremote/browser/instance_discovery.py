"""
Instance port discovery.

LinkedHelper spawns a separate Electron process per LinkedIn account. That
process listens for CDP on a dynamic port that changes every session. The
port is found by walking the process tree with psutil:

1. find the launcher pid listening on the launcher port
2. list the launcher's child processes
3. among the children's listening TCP ports (launcher port excluded), return
   the first one that answers `/json/list`

Each candidate is probed over HTTP because an instance may also listen on
non-CDP ports (its content server, for example).
"""

import logging
from typing import List, Optional

import psutil

from ..config import DEFAULT_CDP_PORT
from .discovery import is_cdp_port

logger = logging.getLogger(__name__)


def discover_instance_port(launcher_port: int = DEFAULT_CDP_PORT) -> Optional[int]:
    """
    Discover the CDP port of the running LinkedHelper instance.

    Returns:
        A port verified to answer `/json/list`, or None when no instance
        is running (or the process table cannot be read).
    """
    launcher_pid = _find_pid_listening_on(launcher_port)
    if launcher_pid is None:
        logger.debug(f"No process listening on launcher port {launcher_port}")
        return None

    for pid in _find_child_pids(launcher_pid):
        port = _find_cdp_port(pid, exclude_port=launcher_port)
        if port is not None:
            logger.debug(f"Instance CDP port {port} found on pid {pid}")
            return port

    return None


def kill_instance_processes(launcher_port: int = DEFAULT_CDP_PORT) -> int:
    """
    Forcefully kill every instance child process of the launcher.

    Last resort when a graceful stop_instance() does not take effect.

    Returns:
        Number of processes that were signalled
    """
    launcher_pid = _find_pid_listening_on(launcher_port)
    if launcher_pid is None:
        return 0

    killed = 0
    for pid in _find_child_pids(launcher_pid):
        try:
            psutil.Process(pid).kill()
            killed += 1
            logger.info(f"Killed instance process {pid}")
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug(f"Could not kill instance process {pid}: {e}")
    return killed


def _find_pid_listening_on(port: int) -> Optional[int]:
    try:
        connections = psutil.net_connections(kind="tcp")
    except (psutil.Error, OSError) as e:
        logger.debug(f"Cannot list TCP connections: {e}")
        return None

    for conn in connections:
        if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port and conn.pid:
            return conn.pid
    return None


def _find_child_pids(parent_pid: int) -> List[int]:
    try:
        return [child.pid for child in psutil.Process(parent_pid).children()]
    except psutil.Error:
        return []


def _listening_ports(pid: int) -> List[int]:
    try:
        connections = psutil.Process(pid).net_connections(kind="tcp")
    except psutil.Error:
        return []
    ports = {
        conn.laddr.port
        for conn in connections
        if conn.status == psutil.CONN_LISTEN and conn.laddr
    }
    return sorted(ports)


def _find_cdp_port(pid: int, exclude_port: int) -> Optional[int]:
    for port in _listening_ports(pid):
        if port == exclude_port:
            continue
        if is_cdp_port(port):
            return port
    return None
