# ==============================================================================
# FILE: netflowmon/core/correlator.py
# PURPOSE: Joins process snapshots with connections and applies the pid scope.
# ==============================================================================
from collections import Counter
from typing import Dict, Iterable, List, Optional

from .data_models import ConnectionRecord, ProcessRecord

PENDING = "pending"
PRESENT = "present"
ABSENT = "absent"


class ProcessCorrelator:
    def __init__(self):
        self._names: Dict[int, str] = {}
        self.target_status = PENDING

    def reset(self):
        self._names.clear()
        self.target_status = PENDING

    def update(self, processes: List[ProcessRecord], connections: List[ConnectionRecord]):
        """Counts connections per pid and refreshes the pid -> name map."""
        per_pid = Counter(conn.pid for conn in connections if conn.pid is not None)
        self._names = {}
        for proc in processes:
            proc.connection_count = per_pid.get(proc.pid, 0)
            self._names[proc.pid] = proc.name

    def name_for(self, pid: Optional[int]) -> Optional[str]:
        if pid is None:
            return None
        return self._names.get(pid)

    def annotate(self, items: Iterable):
        """Sets process_name on flow events or connection records."""
        for item in items:
            name = self.name_for(item.pid)
            if name is not None:
                item.process_name = name

    def scope_processes(self, processes: List[ProcessRecord], target_pid: Optional[int]) -> List[ProcessRecord]:
        if target_pid is None:
            return processes
        scoped = [proc for proc in processes if proc.pid == target_pid]
        self.target_status = PRESENT if scoped else ABSENT
        return scoped
