# ==============================================================================
# FILE: netflowmon/core/simulator.py
# PURPOSE: Synthetic connection/process snapshots for hosts without a real backend.
# ==============================================================================
import random
import time
from typing import List, Optional

from .data_models import ConnectionRecord, ConnectionState, ProcessRecord

SIMULATED_PROCESSES = [
    ('chrome.exe', 1234, 15.2, 1024000),
    ('firefox.exe', 5678, 8.7, 512000),
    ('discord.exe', 9012, 12.3, 768000),
    ('spotify.exe', 3456, 5.1, 256000),
    ('steam.exe', 7890, 20.8, 2048000),
    ('code.exe', 1111, 3.2, 512000),
    ('explorer.exe', 2222, 1.5, 128000),
    ('svchost.exe', 3333, 2.1, 256000),
]

REMOTE_PORTS = [443, 443, 443, 80, 53, 22, 993, 3478, 27015, 5228]
STATES = [
    ConnectionState.ESTABLISHED, ConnectionState.ESTABLISHED, ConnectionState.ESTABLISHED,
    ConnectionState.LISTENING, ConnectionState.TIME_WAIT, ConnectionState.CLOSE_WAIT,
]
LOCAL_ADDRESS = "192.168.1.23"


class SyntheticConnectionSource:
    """
    Keeps a pool of fake flows that persist across polls; every snapshot
    closes a few and opens a few so the diff engine sees realistic churn.
    """

    def __init__(self, rng: Optional[random.Random] = None, pool_size: int = 24,
                 churn: float = 0.15):
        self.rng = rng or random.Random()
        self.pool_size = pool_size
        self.churn = churn
        self._flows: List[ConnectionRecord] = []

    def probe(self):
        pass

    def interfaces(self) -> int:
        return 1

    def _new_flow(self, now: float) -> ConnectionRecord:
        _, pid, _, _ = self.rng.choice(SIMULATED_PROCESSES)
        return ConnectionRecord(
            protocol="TCP" if self.rng.random() < 0.85 else "UDP",
            local_address=LOCAL_ADDRESS,
            local_port=self.rng.randint(49152, 65535),
            remote_address=f"{self.rng.randint(1, 223)}.{self.rng.randint(0, 255)}."
                           f"{self.rng.randint(0, 255)}.{self.rng.randint(1, 254)}",
            remote_port=self.rng.choice(REMOTE_PORTS),
            state=self.rng.choice(STATES),
            pid=pid,
            first_seen=now,
            observed_at=now,
        )

    def snapshot(self) -> List[ConnectionRecord]:
        now = time.time()
        self._flows = [f for f in self._flows if self.rng.random() >= self.churn]
        while len(self._flows) < self.pool_size:
            self._flows.append(self._new_flow(now))
        # Fresh copies so callers can annotate them freely
        return [
            ConnectionRecord(f.protocol, f.local_address, f.local_port, f.remote_address,
                             f.remote_port, f.state, f.pid, first_seen=now, observed_at=now)
            for f in self._flows
        ]


class SyntheticProcessSource:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def snapshot(self) -> List[ProcessRecord]:
        now = time.time()
        return [
            ProcessRecord(
                pid=pid,
                name=name,
                cpu=max(0.0, cpu + (self.rng.random() - 0.5) * 5),
                memory=memory + self.rng.randint(0, 100000),
                last_seen=now,
            )
            for name, pid, cpu, memory in SIMULATED_PROCESSES
        ]
