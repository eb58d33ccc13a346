"""Scripted snapshot sources and record builders shared by the tests."""
import time

from netflowmon.core.data_models import ConnectionRecord, ConnectionState, ProcessRecord
from netflowmon.core.sources import MonitorStartError


def conn(local_port=5000, remote="93.1.1.1", remote_port=443, state="ESTABLISHED",
         pid=10, protocol="TCP", local="10.0.0.1"):
    return ConnectionRecord(
        protocol=protocol,
        local_address=local,
        local_port=local_port,
        remote_address=remote,
        remote_port=remote_port,
        state=ConnectionState.parse(state),
        pid=pid,
    )


def proc(pid, name="app.exe", cpu=1.0, memory=1024):
    return ProcessRecord(pid=pid, name=name, cpu=cpu, memory=memory)


class FakeConnectionSource:
    """Returns scripted snapshots in order, then repeats the last one."""

    def __init__(self, snapshots=None, fail_probe=False, delay=0.0):
        self.snapshots = list(snapshots or [[]])
        self.fail_probe = fail_probe
        self.delay = delay
        self.calls = 0

    def probe(self):
        if self.fail_probe:
            raise MonitorStartError("No network interfaces found on this system.")

    def snapshot(self):
        if self.delay:
            time.sleep(self.delay)
        index = min(self.calls, len(self.snapshots) - 1)
        self.calls += 1
        # Copies, like a real source producing fresh rows each poll
        return [ConnectionRecord(c.protocol, c.local_address, c.local_port, c.remote_address,
                                 c.remote_port, c.state, c.pid) for c in self.snapshots[index]]

    def interfaces(self):
        return 2


class FakeProcessSource:
    def __init__(self, processes=None):
        self.processes = list(processes or [])

    def snapshot(self):
        return [ProcessRecord(p.pid, p.name, p.cpu, p.memory) for p in self.processes]


def static_resolver(names):
    """Resolver stub: dict lookup, raising like socket.gethostbyaddr on a miss."""
    calls = []

    def resolve(ip):
        calls.append(ip)
        if ip in names:
            return names[ip]
        raise OSError(f"unknown host {ip}")

    resolve.calls = calls
    return resolve
