# ==============================================================================
# FILE: netflowmon/core/data_models.py
# PURPOSE: Defines the structured records that flow through the monitor.
# ==============================================================================
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional


class ConnectionState(str, Enum):
    ESTABLISHED = "ESTABLISHED"
    LISTENING = "LISTENING"
    SYN_SENT = "SYN_SENT"
    SYN_RECEIVED = "SYN_RECEIVED"
    FIN_WAIT_1 = "FIN_WAIT_1"
    FIN_WAIT_2 = "FIN_WAIT_2"
    TIME_WAIT = "TIME_WAIT"
    CLOSE_WAIT = "CLOSE_WAIT"
    CLOSED = "CLOSED"
    LAST_ACK = "LAST_ACK"
    CLOSING = "CLOSING"
    NONE = "NONE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "ConnectionState":
        """Maps netstat/psutil spellings onto a single vocabulary."""
        if not raw:
            return cls.NONE
        text = raw.strip().upper().replace("-", "_")
        text = _STATE_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN


_STATE_ALIASES = {
    "LISTEN": "LISTENING",
    "ESTAB": "ESTABLISHED",
    "SYN_RECV": "SYN_RECEIVED",
    "FIN_WAIT1": "FIN_WAIT_1",
    "FIN_WAIT2": "FIN_WAIT_2",
    "CLOSE": "CLOSED",
}

# Sessions that carry traffic right now
ACTIVE_STATES = frozenset({
    ConnectionState.ESTABLISHED,
    ConnectionState.CLOSE_WAIT,
    ConnectionState.FIN_WAIT_1,
    ConnectionState.FIN_WAIT_2,
})
# Sockets that never produce a flow event when first seen
SILENT_STATES = frozenset({ConnectionState.LISTENING, ConnectionState.TIME_WAIT})

OUTGOING = "outgoing"
INCOMING = "incoming"


def format_endpoint(address: str, port: int) -> str:
    if ":" in address:
        return f"[{address}]:{port}"
    return f"{address}:{port}"


class FlowKey(NamedTuple):
    protocol: str
    local_address: str
    local_port: int
    remote_address: str
    remote_port: int


@dataclass
class ConnectionRecord:
    protocol: str
    local_address: str
    local_port: int
    remote_address: str
    remote_port: int
    state: ConnectionState
    pid: Optional[int] = None
    domain: Optional[str] = None
    process_name: Optional[str] = None
    first_seen: float = field(default_factory=time.time)
    observed_at: float = field(default_factory=time.time)

    @property
    def key(self) -> FlowKey:
        return FlowKey(self.protocol, self.local_address, self.local_port,
                       self.remote_address, self.remote_port)

    @property
    def timestamp(self) -> float:
        return self.observed_at

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass
class FlowEvent:
    """A "packet" as shown on the dashboard, inferred from connection tables."""
    protocol: str
    source: str
    destination: str
    direction: str
    flags: str
    size: int = 1
    pid: Optional[int] = None
    domain: Optional[str] = None
    process_name: Optional[str] = None
    is_activity: bool = False
    details: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProcessRecord:
    pid: int
    name: str
    cpu: float = 0.0
    memory: int = 0
    connection_count: int = 0
    last_seen: float = field(default_factory=time.time)

    @property
    def timestamp(self) -> float:
        return self.last_seen

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DomainStat:
    domain: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
