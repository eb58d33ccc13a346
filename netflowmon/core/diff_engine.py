# ==============================================================================
# FILE: netflowmon/core/diff_engine.py
# PURPOSE: Detects new/closed flows between successive connection snapshots.
# ==============================================================================
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .data_models import (
    ACTIVE_STATES, INCOMING, OUTGOING, SILENT_STATES,
    ConnectionRecord, FlowEvent, FlowKey, format_endpoint,
)
from .dns_cache import DnsCache

logger = logging.getLogger(__name__)


def classify_direction(local_port: int, remote_port: int) -> str:
    """Ephemeral port heuristic: a low remote port is a server we connected to."""
    if local_port < remote_port or (local_port >= 1024 and remote_port < 1024):
        return OUTGOING
    return INCOMING


def in_scope(pid: Optional[int], target_pid: Optional[int]) -> bool:
    return target_pid is None or pid == target_pid


def flow_event_from_connection(conn: ConnectionRecord, size: int = 1, flags: Optional[str] = None,
                               is_activity: bool = False) -> FlowEvent:
    details = f"{conn.protocol} {conn.local_port} → {conn.remote_port}"
    if is_activity:
        details += " (Activity)"
    return FlowEvent(
        protocol=conn.protocol,
        source=format_endpoint(conn.local_address, conn.local_port),
        destination=format_endpoint(conn.remote_address, conn.remote_port),
        direction=classify_direction(conn.local_port, conn.remote_port),
        flags=flags if flags is not None else conn.state.value,
        size=size,
        pid=conn.pid,
        domain=conn.domain,
        process_name=conn.process_name,
        is_activity=is_activity,
        details=details,
    )


@dataclass
class DiffResult:
    flow_events: List[FlowEvent] = field(default_factory=list)
    active_connections: List[ConnectionRecord] = field(default_factory=list)
    closed: List[FlowKey] = field(default_factory=list)


class ConnectionDiffEngine:
    """
    Tracks the last known connection table and turns snapshot deltas into
    flow events. First-seen detection is keyed on flow identity only, so a
    socket that moves from LISTENING to ESTABLISHED is not reported again.
    """

    def __init__(self, dns: DnsCache):
        self.dns = dns
        self.last_known: Dict[FlowKey, ConnectionRecord] = {}

    def reset(self):
        self.last_known.clear()

    def detect(self, snapshot: List[ConnectionRecord]):
        """
        Applies one snapshot to last_known and returns (new_records, closed_keys).
        Runs without awaiting so the update is atomic per snapshot.
        """
        new_records = []
        for record in snapshot:
            key = record.key
            known = self.last_known.get(key)
            if known is not None:
                record.first_seen = known.first_seen
                continue
            self.last_known[key] = record
            if record.state in SILENT_STATES:
                continue
            new_records.append(record)

        current_keys = {record.key for record in snapshot}
        closed = [key for key in self.last_known if key not in current_keys]
        for key in closed:
            del self.last_known[key]
        return new_records, closed

    async def process(self, snapshot: List[ConnectionRecord],
                      target_pid: Optional[int] = None) -> DiffResult:
        new_records, closed = self.detect(snapshot)
        if new_records or closed:
            logger.debug("Diff: %d new flow(s), %d closed, %d tracked",
                         len(new_records), len(closed), len(self.last_known))

        fresh = [r for r in new_records if in_scope(r.pid, target_pid)]
        active = [r for r in snapshot
                  if r.state in ACTIVE_STATES and in_scope(r.pid, target_pid)]
        try:
            names = await self.dns.resolve_many(r.remote_address for r in fresh + active)
        except asyncio.CancelledError:
            # Cancelled before any event left: the next snapshot must see these flows as new
            self.forget(new_records)
            raise

        result = DiffResult(closed=closed)
        for record in fresh:
            record.domain = names.get(record.remote_address)
            result.flow_events.append(flow_event_from_connection(record))
        for record in active:
            record.domain = names.get(record.remote_address)
            result.active_connections.append(record)
        return result

    def forget(self, records: List[ConnectionRecord]):
        """Drops records added by detect() that were never reported."""
        for record in records:
            if self.last_known.get(record.key) is record:
                del self.last_known[record.key]
