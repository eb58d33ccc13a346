# ==============================================================================
# FILE: netflowmon/core/events.py
# PURPOSE: Typed publish/subscribe channels between the monitor and its consumers.
# ==============================================================================
import inspect
import logging
from typing import Any, Callable, Dict, Generic, List, TypeVar

from .data_models import ConnectionRecord, DomainStat, FlowEvent, ProcessRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Channel(Generic[T]):
    """One event kind. Handlers may be plain functions or coroutines."""

    def __init__(self, name: str):
        self.name = name
        self._handlers: List[Callable[[T], Any]] = []

    def subscribe(self, handler: Callable[[T], Any]) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)
        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    async def publish(self, payload: T):
        for handler in self._handlers[:]:
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Subscriber of '%s' failed", self.name)


class MonitorEvents:
    def __init__(self):
        self.packet: Channel[FlowEvent] = Channel("packet")
        self.connection: Channel[ConnectionRecord] = Channel("connection")
        self.connections: Channel[List[ConnectionRecord]] = Channel("connections")
        self.processes: Channel[List[ProcessRecord]] = Channel("processes")
        self.domains: Channel[List[DomainStat]] = Channel("domains")
        self.stats: Channel[Dict[str, Any]] = Channel("stats")

    def channels(self) -> List[Channel]:
        return [self.packet, self.connection, self.connections,
                self.processes, self.domains, self.stats]
