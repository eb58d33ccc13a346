# ==============================================================================
# FILE: netflowmon/core/activity.py
# PURPOSE: Estimates ongoing traffic on established flows of the target process.
# ==============================================================================
import random
from typing import List, Optional

from .data_models import ConnectionRecord, ConnectionState, FlowEvent
from .diff_engine import flow_event_from_connection

MIN_ESTIMATE = 64
MAX_ESTIMATE = 1063


class ActivityEstimator:
    """
    Without payload capture there is no way to see whether a live flow is
    moving data, so each established flow of the target process rolls a die
    every cycle. The output is an estimate, never a measurement.
    """

    def __init__(self, probability: float = 0.3, enabled: bool = True,
                 rng: Optional[random.Random] = None):
        self.probability = probability
        self.enabled = enabled
        self.rng = rng or random.Random()

    def estimate(self, snapshot: List[ConnectionRecord], target_pid: Optional[int]) -> List[FlowEvent]:
        if not self.enabled or target_pid is None:
            return []
        events = []
        for conn in snapshot:
            if conn.state is not ConnectionState.ESTABLISHED or conn.pid != target_pid:
                continue
            if self.rng.random() >= self.probability:
                continue
            size = self.rng.randint(MIN_ESTIMATE, MAX_ESTIMATE)
            events.append(flow_event_from_connection(conn, size=size, flags="DATA", is_activity=True))
        return events
