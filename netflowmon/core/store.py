# ==============================================================================
# FILE: netflowmon/core/store.py
# PURPOSE: Bounded newest-first telemetry buffers with lifetime counters.
# ==============================================================================
import collections
import itertools
import time
from typing import Any, Dict, List, Optional

from .data_models import ConnectionRecord, DomainStat, FlowEvent, ProcessRecord
from .services import service_name

PACKET = "packet"
CONNECTION = "connection"
PROCESS = "process"

DEFAULT_MAX_ITEMS = 10_000


class TelemetryStore:
    """
    Three independent buffers (flow events, connections, processes), each
    holding at most max_items, newest first. Counters are lifetime totals:
    evicting an item from a buffer does not decrement anything, only clear()
    resets them.
    """

    def __init__(self, max_items: int = DEFAULT_MAX_ITEMS):
        self.max_items = max_items
        self.clear()

    def clear(self):
        self._packets = collections.deque(maxlen=self.max_items)
        self._connections = collections.deque(maxlen=self.max_items)
        # pid -> record, iteration order is newest first
        self._processes: "collections.OrderedDict[int, ProcessRecord]" = collections.OrderedDict()
        self.total_packets = 0
        self.total_connections = 0
        self._protocols: Dict[str, int] = {}
        self._ports: Dict[int, int] = {}
        self._domains: Dict[str, int] = {}

    # --- Writes ---

    def append(self, kind: str, record):
        if kind == PACKET:
            self._append_packet(record)
        elif kind == CONNECTION:
            self._append_connection(record)
        elif kind == PROCESS:
            self._upsert_process(record)
        else:
            raise ValueError(f"Unknown record kind: {kind}")

    def _append_packet(self, packet: FlowEvent):
        # deque(maxlen) drops from the right when full
        self._packets.appendleft(packet)
        self.total_packets += 1
        self._protocols[packet.protocol] = self._protocols.get(packet.protocol, 0) + 1
        if packet.domain:
            self._domains[packet.domain] = self._domains.get(packet.domain, 0) + 1

    def _append_connection(self, conn: ConnectionRecord):
        self._connections.appendleft(conn)
        self.total_connections += 1
        self._ports[conn.remote_port] = self._ports.get(conn.remote_port, 0) + 1

    def _upsert_process(self, proc: ProcessRecord):
        if proc.pid in self._processes:
            self._processes[proc.pid] = proc
            return
        self._processes[proc.pid] = proc
        self._processes.move_to_end(proc.pid, last=False)
        while len(self._processes) > self.max_items:
            self._processes.popitem(last=True)

    # --- Reads ---

    def _sequence(self, kind: str):
        if kind == PACKET:
            return self._packets
        if kind == CONNECTION:
            return self._connections
        if kind == PROCESS:
            return self._processes.values()
        raise ValueError(f"Unknown record kind: {kind}")

    def query(self, kind: str, limit: int = 50, offset: int = 0) -> List:
        offset = max(offset, 0)
        limit = max(limit, 0)
        return list(itertools.islice(self._sequence(kind), offset, offset + limit))

    def count(self, kind: str) -> int:
        return len(self._sequence(kind))

    def processes(self) -> List[ProcessRecord]:
        return list(self._processes.values())

    def get_process(self, pid: int) -> Optional[ProcessRecord]:
        return self._processes.get(pid)

    def top_domains(self, limit: int = 10) -> List[DomainStat]:
        # sorted() is stable with reverse=True, so ties keep first-seen order
        ranked = sorted(self._domains.items(), key=lambda item: item[1], reverse=True)
        return [DomainStat(domain, count) for domain, count in ranked[:limit]]

    def protocol_stats(self) -> List[Dict[str, Any]]:
        ranked = sorted(self._protocols.items(), key=lambda item: item[1], reverse=True)
        return [{'protocol': protocol, 'count': count} for protocol, count in ranked]

    def port_stats(self) -> List[Dict[str, Any]]:
        ranked = sorted(self._ports.items(), key=lambda item: item[1], reverse=True)
        return [{'port': port, 'count': count, 'service': service_name(port)} for port, count in ranked]

    def recent_activity(self, minutes: float = 5, now: Optional[float] = None) -> Dict[str, List]:
        now = time.time() if now is None else now
        cutoff = now - minutes * 60
        return {
            'packets': [p for p in self._packets if p.timestamp > cutoff],
            'connections': [c for c in self._connections if c.timestamp > cutoff],
            'processes': [p for p in self._processes.values() if p.timestamp > cutoff],
        }

    def general_stats(self) -> Dict[str, int]:
        return {
            'total_packets': self.total_packets,
            'total_connections': self.total_connections,
            'active_processes': len(self._processes),
            'unique_domains': len(self._domains),
            'protocols': len(self._protocols),
            'ports': len(self._ports),
        }
