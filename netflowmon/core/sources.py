# ==============================================================================
# FILE: netflowmon/core/sources.py
# PURPOSE: Reads the OS connection table and process list (psutil or netstat).
# ==============================================================================
import logging
import platform
import shutil
import socket
import subprocess
import time
from typing import List, Optional, Protocol, Tuple

import psutil

from .config import MonitorConfig
from .data_models import ConnectionRecord, ConnectionState, ProcessRecord
from .simulator import SyntheticConnectionSource, SyntheticProcessSource

logger = logging.getLogger(__name__)


class MonitorStartError(RuntimeError):
    """The monitoring backend cannot run on this host."""


class ConnectionSnapshotSource(Protocol):
    def probe(self) -> None: ...
    def snapshot(self) -> List[ConnectionRecord]: ...
    def interfaces(self) -> int: ...


class ProcessSnapshotSource(Protocol):
    def snapshot(self) -> List[ProcessRecord]: ...


def list_interfaces() -> List[str]:
    """Names of the network interfaces known to the OS."""
    try:
        return list(psutil.net_if_addrs().keys())
    except (psutil.Error, OSError) as e:
        logger.warning("Unable to retrieve interfaces: %s", e)
        return []


# --- psutil backend ---

def connection_from_psutil(conn, observed_at: float) -> Optional[ConnectionRecord]:
    """Converts one psutil sconn; returns None for sockets without a usable endpoint."""
    if not conn.laddr:
        return None
    state = ConnectionState.parse(conn.status)
    if conn.raddr:
        remote_ip, remote_port = conn.raddr.ip, conn.raddr.port
    elif state is ConnectionState.LISTENING:
        remote_ip, remote_port = "", 0
    else:
        # Unconnected UDP sockets have no peer
        return None
    protocol = "TCP" if conn.type == socket.SOCK_STREAM else "UDP"
    return ConnectionRecord(
        protocol=protocol,
        local_address=conn.laddr.ip,
        local_port=conn.laddr.port,
        remote_address=remote_ip,
        remote_port=remote_port,
        state=state,
        pid=conn.pid,
        first_seen=observed_at,
        observed_at=observed_at,
    )


class PsutilConnectionSource:
    """Connection table via psutil.net_connections."""

    def probe(self):
        if not list_interfaces():
            raise MonitorStartError("No network interfaces found on this system.")
        try:
            psutil.net_connections(kind='inet')
        except psutil.AccessDenied:
            raise MonitorStartError(
                "Access denied reading the connection table. Run with administrator privileges.") from None
        except (psutil.Error, OSError) as e:
            raise MonitorStartError(f"Unable to read the connection table: {e}") from e

    def snapshot(self) -> List[ConnectionRecord]:
        now = time.time()
        try:
            raw = psutil.net_connections(kind='inet')
        except (psutil.Error, OSError) as e:
            logger.warning("Could not read connection table: %s", e)
            return []
        records = []
        for conn in raw:
            record = connection_from_psutil(conn, now)
            if record is not None:
                records.append(record)
        return records

    def interfaces(self) -> int:
        return len(list_interfaces())


# --- netstat backend ---

def split_endpoint(text: str) -> Optional[Tuple[str, int]]:
    """'10.0.0.1:443' / '[::1]:443' / ':::22' -> (address, port)."""
    if ":" not in text:
        return None
    address, port_str = text.rsplit(":", 1)
    address = address.strip("[]")
    try:
        return address, int(port_str)
    except ValueError:
        return None


def _normalize_protocol(raw: str) -> Optional[str]:
    raw = raw.upper()
    if raw.startswith("TCP"):
        return "TCP"
    if raw.startswith("UDP"):
        return "UDP"
    return None


def _build_record(protocol, local, remote_text, state, pid, now) -> Optional[ConnectionRecord]:
    remote = split_endpoint(remote_text)
    if remote is None:
        if state is not ConnectionState.LISTENING:
            return None
        remote = ("", 0)
    return ConnectionRecord(
        protocol=protocol,
        local_address=local[0],
        local_port=local[1],
        remote_address=remote[0],
        remote_port=remote[1],
        state=state,
        pid=pid,
        first_seen=now,
        observed_at=now,
    )


def parse_windows_netstat(output: str, now: Optional[float] = None) -> List[ConnectionRecord]:
    """Parses `netstat -ano`: Proto, Local, Foreign, [State], PID."""
    now = time.time() if now is None else now
    records = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 4:
            continue
        protocol = _normalize_protocol(parts[0])
        if protocol is None:
            continue
        if len(parts) >= 5:
            state, pid_str = ConnectionState.parse(parts[3]), parts[4]
        else:
            state, pid_str = ConnectionState.NONE, parts[3]
        local = split_endpoint(parts[1])
        if local is None or not pid_str.isdigit():
            continue
        record = _build_record(protocol, local, parts[2], state, int(pid_str), now)
        if record is not None:
            records.append(record)
    return records


def parse_linux_netstat(output: str, now: Optional[float] = None) -> List[ConnectionRecord]:
    """Parses `netstat -tunap`: Proto, Recv-Q, Send-Q, Local, Foreign, [State], PID/Program."""
    now = time.time() if now is None else now
    records = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 6:
            continue
        protocol = _normalize_protocol(parts[0])
        if protocol is None:
            continue
        if len(parts) >= 7:
            state, owner = ConnectionState.parse(parts[5]), parts[6]
        else:
            state, owner = ConnectionState.NONE, parts[5]
        local = split_endpoint(parts[3])
        if local is None:
            continue
        pid_str = owner.split("/", 1)[0]
        pid = int(pid_str) if pid_str.isdigit() else None
        record = _build_record(protocol, local, parts[4], state, pid, now)
        if record is not None:
            records.append(record)
    return records


class NetstatConnectionSource:
    """Connection table via the netstat command."""

    def __init__(self, system: Optional[str] = None, timeout: float = 10.0):
        self.system = system or platform.system()
        self.timeout = timeout

    @property
    def command(self) -> List[str]:
        if self.system == 'Windows':
            return ['netstat', '-ano']
        return ['netstat', '-tunap']

    def probe(self):
        if shutil.which('netstat') is None:
            raise MonitorStartError("The 'netstat' command is not available on this system.")
        if self.system not in ('Windows', 'Linux'):
            raise MonitorStartError(f"netstat output on {self.system} is not supported; use the psutil backend.")

    def snapshot(self) -> List[ConnectionRecord]:
        try:
            result = subprocess.run(self.command, capture_output=True, text=True,
                                    timeout=self.timeout, check=False)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Error running netstat: %s", e)
            return []
        if result.returncode != 0 and not result.stdout:
            logger.warning("netstat exited with status %d: %s", result.returncode, result.stderr.strip())
            return []
        if self.system == 'Windows':
            return parse_windows_netstat(result.stdout)
        return parse_linux_netstat(result.stdout)

    def interfaces(self) -> int:
        return len(list_interfaces())


# --- process list ---

class PsutilProcessSource:
    """Running processes with CPU and resident memory."""

    def snapshot(self) -> List[ProcessRecord]:
        now = time.time()
        records = []
        try:
            for proc in psutil.process_iter(['pid', 'name', 'cpu_percent', 'memory_info']):
                info = proc.info
                memory = info.get('memory_info')
                records.append(ProcessRecord(
                    pid=info['pid'],
                    name=info.get('name') or 'N/A',
                    cpu=info.get('cpu_percent') or 0.0,
                    memory=memory.rss if memory else 0,
                    last_seen=now,
                ))
        except (psutil.Error, OSError) as e:
            logger.warning("Could not read process list: %s", e)
            return []
        return records


def build_sources(config: MonitorConfig) -> Tuple[ConnectionSnapshotSource, ProcessSnapshotSource]:
    """Picks the snapshot sources named by config.backend."""
    if config.backend == "simulated":
        return SyntheticConnectionSource(), SyntheticProcessSource()
    if config.backend == "netstat":
        return NetstatConnectionSource(timeout=config.snapshot_timeout), PsutilProcessSource()
    return PsutilConnectionSource(), PsutilProcessSource()
