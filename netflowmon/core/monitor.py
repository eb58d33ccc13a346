# ==============================================================================
# FILE: netflowmon/core/monitor.py
# PURPOSE: Owns the polling pipeline, the telemetry store and mode control.
# ==============================================================================
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from .activity import ActivityEstimator
from .config import MonitorConfig
from .correlator import ProcessCorrelator
from .data_models import ConnectionRecord, FlowEvent, ProcessRecord
from .diff_engine import ConnectionDiffEngine
from .dns_cache import DnsCache
from .events import MonitorEvents
from .scheduler import Scheduler
from .sources import (
    ConnectionSnapshotSource, MonitorStartError, ProcessSnapshotSource, build_sources,
)
from .store import CONNECTION, PACKET, PROCESS, TelemetryStore

logger = logging.getLogger(__name__)

GLOBAL = "global"
PROCESS_MODE = "process"

__all__ = ["NetworkMonitor", "MonitorStartError", "GLOBAL", "PROCESS_MODE"]


class NetworkMonitor:
    """
    Single long-lived owner of all monitoring state. Three timers drive it:
    poll (connections + processes), activity (estimates for the target
    process) and stats (aggregate broadcast).
    """

    def __init__(self, config: Optional[MonitorConfig] = None,
                 connection_source: Optional[ConnectionSnapshotSource] = None,
                 process_source: Optional[ProcessSnapshotSource] = None,
                 dns: Optional[DnsCache] = None,
                 activity: Optional[ActivityEstimator] = None):
        self.config = config or MonitorConfig()
        if connection_source is None or process_source is None:
            default_connections, default_processes = build_sources(self.config)
            connection_source = connection_source or default_connections
            process_source = process_source or default_processes
        self.connection_source = connection_source
        self.process_source = process_source

        self.dns = dns or DnsCache(timeout=self.config.dns_timeout,
                                   max_entries=self.config.dns_cache_size)
        self.diff = ConnectionDiffEngine(self.dns)
        self.activity = activity or ActivityEstimator(
            probability=self.config.activity_probability,
            enabled=self.config.activity_enabled)
        self.correlator = ProcessCorrelator()
        self.store = TelemetryStore(max_items=self.config.max_items)
        self.events = MonitorEvents()
        self.target_pid: Optional[int] = self.config.target_pid

        self.scheduler = Scheduler()
        self.scheduler.add("poll", self.config.poll_interval, self.poll_cycle)
        self.scheduler.add("activity", self.config.activity_interval, self.activity_cycle)
        self.scheduler.add("stats", self.config.stats_interval, self.stats_cycle)

    # --- Lifecycle ---

    @property
    def is_running(self) -> bool:
        return self.scheduler.running

    @property
    def mode(self) -> str:
        return GLOBAL if self.target_pid is None else PROCESS_MODE

    async def start(self):
        """Raises MonitorStartError if the backend cannot run here."""
        if self.is_running:
            return
        self.connection_source.probe()
        self.scheduler.start()
        logger.info("Monitoring started (%s mode%s)", self.mode,
                    f", pid {self.target_pid}" if self.target_pid is not None else "")

    async def stop(self):
        """
        Stops the timers; diff state and caches are kept for a restart. A
        cycle in flight is allowed to finish within its own watchdogs.
        """
        if not self.is_running:
            return
        await self.scheduler.stop(grace=self.config.snapshot_timeout + self.config.dns_timeout)
        logger.info("Monitoring stopped")

    async def start_global(self):
        await self.stop()
        self.target_pid = None
        self.store.clear()
        await self.start()

    async def start_process(self, pid: int):
        await self.stop()
        self.target_pid = pid
        self.diff.reset()
        self.correlator.reset()
        self.store.clear()
        await self.start()

    # --- Snapshots ---

    async def _snapshot(self, fetch: Callable[[], List], label: str) -> List:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, fetch),
                                          self.config.snapshot_timeout)
        except asyncio.TimeoutError:
            logger.warning("%s snapshot timed out after %.1fs", label, self.config.snapshot_timeout)
            return []

    # --- Cycles ---

    async def poll_cycle(self):
        connections, processes = await asyncio.gather(
            self._snapshot(self.connection_source.snapshot, "Connection"),
            self._snapshot(self.process_source.snapshot, "Process"),
        )
        self.correlator.update(processes, connections)
        self.correlator.annotate(connections)

        result = await self.diff.process(connections, self.target_pid)
        for event in result.flow_events:
            await self._record_packet(event)
        await self._record_connections(result.active_connections)

        scoped = self.correlator.scope_processes(processes, self.target_pid)
        for proc in scoped:
            self.store.append(PROCESS, proc)
        await self.events.processes.publish(scoped)

    async def activity_cycle(self):
        if not self.activity.enabled or self.target_pid is None:
            return
        connections = await self._snapshot(self.connection_source.snapshot, "Connection")
        owned = [conn for conn in connections if conn.pid == self.target_pid]
        self.correlator.annotate(owned)
        names = await self.dns.resolve_many(conn.remote_address for conn in owned)
        for conn in owned:
            conn.domain = names.get(conn.remote_address)
        for event in self.activity.estimate(owned, self.target_pid):
            await self._record_packet(event)

    async def stats_cycle(self):
        await self.events.stats.publish(self.general_stats())
        await self.events.domains.publish(self.store.top_domains(10))

    async def _record_packet(self, event: FlowEvent):
        self.store.append(PACKET, event)
        await self.events.packet.publish(event)

    async def _record_connections(self, connections: List[ConnectionRecord]):
        # In process mode an empty batch is not broadcast
        if not connections and self.target_pid is not None:
            return
        for conn in connections:
            self.store.append(CONNECTION, conn)
            await self.events.connection.publish(conn)
        await self.events.connections.publish(connections)

    # --- Queries ---

    def general_stats(self) -> Dict[str, Any]:
        stats = self.store.general_stats()
        stats['is_monitoring'] = self.is_running
        stats['interfaces'] = self.connection_source.interfaces()
        return stats

    def status(self) -> Dict[str, Any]:
        return {
            'mode': self.mode,
            'target_pid': self.target_pid,
            'target_status': self.correlator.target_status if self.target_pid is not None else None,
            'is_monitoring': self.is_running,
            'skipped_ticks': self.scheduler.skipped,
            'completed_cycles': self.scheduler.runs,
            'dns_cache_size': self.dns.size,
            'tracked_flows': len(self.diff.last_known),
        }

    async def list_processes(self) -> List[ProcessRecord]:
        """Fresh process list, scoped like the broadcast one."""
        processes = await self._snapshot(self.process_source.snapshot, "Process")
        if self.target_pid is None:
            return processes
        return [proc for proc in processes if proc.pid == self.target_pid]

    async def process_info(self, pid: int) -> Optional[ProcessRecord]:
        """Fresh record for one pid regardless of scope, or None."""
        processes = await self._snapshot(self.process_source.snapshot, "Process")
        for proc in processes:
            if proc.pid == pid:
                return proc
        return None
