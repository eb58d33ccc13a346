import random
import socket
import subprocess
from collections import namedtuple
from types import SimpleNamespace
from unittest.mock import patch

import psutil
import pytest

from netflowmon.core.config import MonitorConfig
from netflowmon.core.data_models import ConnectionState
from netflowmon.core.simulator import SyntheticConnectionSource, SyntheticProcessSource
from netflowmon.core.sources import (
    MonitorStartError, NetstatConnectionSource, PsutilConnectionSource, PsutilProcessSource,
    build_sources, connection_from_psutil, parse_linux_netstat, parse_windows_netstat,
    split_endpoint,
)

addr = namedtuple("addr", ["ip", "port"])
sconn = namedtuple("sconn", ["fd", "family", "type", "laddr", "raddr", "status", "pid"])

WINDOWS_OUTPUT = """
Active Connections

  Proto  Local Address          Foreign Address        State           PID
  TCP    0.0.0.0:135            0.0.0.0:0              LISTENING       1024
  TCP    10.0.0.1:5000          93.1.1.1:443           ESTABLISHED     4242
  TCP    [::1]:49700            [::1]:5432             TIME_WAIT       0
  UDP    0.0.0.0:123            *:*                                    988
  TCP    10.0.0.1:5001          93.1.1.2:443           ESTABLISHED     notapid
"""

LINUX_OUTPUT = """Active Internet connections (servers and established)
Proto Recv-Q Send-Q Local Address           Foreign Address         State       PID/Program name
tcp        0      0 0.0.0.0:22              0.0.0.0:*               LISTEN      812/sshd
tcp        0      0 10.0.0.1:5000           93.1.1.1:443            ESTABLISHED 4242/firefox
tcp6       0      0 :::80                   :::*                    LISTEN      -
udp        0      0 0.0.0.0:68              0.0.0.0:*                           655/dhclient
udp        0      0 10.0.0.1:41000          8.8.8.8:53              ESTABLISHED 700/resolved
"""


def test_state_parse_normalizes_os_spellings():
    assert ConnectionState.parse("LISTEN") is ConnectionState.LISTENING
    assert ConnectionState.parse("FIN_WAIT1") is ConnectionState.FIN_WAIT_1
    assert ConnectionState.parse("SYN_RECV") is ConnectionState.SYN_RECEIVED
    assert ConnectionState.parse("established") is ConnectionState.ESTABLISHED
    assert ConnectionState.parse("") is ConnectionState.NONE
    assert ConnectionState.parse("HALF_OPEN") is ConnectionState.UNKNOWN


def test_split_endpoint():
    assert split_endpoint("10.0.0.1:443") == ("10.0.0.1", 443)
    assert split_endpoint("[::1]:5432") == ("::1", 5432)
    assert split_endpoint(":::22") == ("::", 22)
    assert split_endpoint("*:*") is None
    assert split_endpoint("nonsense") is None


def test_parse_windows_netstat():
    records = parse_windows_netstat(WINDOWS_OUTPUT, now=1.0)

    assert [(r.protocol, r.local_port, r.state, r.pid) for r in records] == [
        ("TCP", 135, ConnectionState.LISTENING, 1024),
        ("TCP", 5000, ConnectionState.ESTABLISHED, 4242),
        ("TCP", 49700, ConnectionState.TIME_WAIT, 0),
    ]
    assert records[1].remote_address == "93.1.1.1"
    assert records[2].local_address == "::1"
    assert records[1].observed_at == 1.0


def test_parse_linux_netstat():
    records = parse_linux_netstat(LINUX_OUTPUT)

    summary = [(r.protocol, r.local_port, r.remote_port, r.state, r.pid) for r in records]
    assert summary == [
        ("TCP", 22, 0, ConnectionState.LISTENING, 812),
        ("TCP", 5000, 443, ConnectionState.ESTABLISHED, 4242),
        ("TCP", 80, 0, ConnectionState.LISTENING, None),
        ("UDP", 41000, 53, ConnectionState.ESTABLISHED, 700),
    ]


def test_connection_from_psutil():
    established = sconn(3, socket.AF_INET, socket.SOCK_STREAM, addr("10.0.0.1", 5000),
                        addr("93.1.1.1", 443), "ESTABLISHED", 4242)
    listening = sconn(4, socket.AF_INET, socket.SOCK_STREAM, addr("0.0.0.0", 22), (), "LISTEN", 812)
    bare_udp = sconn(5, socket.AF_INET, socket.SOCK_DGRAM, addr("0.0.0.0", 68), (), "NONE", 655)

    record = connection_from_psutil(established, 5.0)
    assert (record.protocol, record.remote_port, record.state, record.pid) == \
        ("TCP", 443, ConnectionState.ESTABLISHED, 4242)
    assert connection_from_psutil(listening, 5.0).remote_address == ""
    assert connection_from_psutil(bare_udp, 5.0) is None


def test_psutil_source_returns_empty_on_failure():
    with patch("psutil.net_connections", side_effect=psutil.AccessDenied()):
        assert PsutilConnectionSource().snapshot() == []


def test_psutil_probe_reports_access_denied():
    with patch("netflowmon.core.sources.list_interfaces", return_value=["eth0"]), \
            patch("psutil.net_connections", side_effect=psutil.AccessDenied()):
        with pytest.raises(MonitorStartError, match="Access denied"):
            PsutilConnectionSource().probe()


def test_psutil_probe_requires_interfaces():
    with patch("netflowmon.core.sources.list_interfaces", return_value=[]):
        with pytest.raises(MonitorStartError, match="No network interfaces"):
            PsutilConnectionSource().probe()


def test_netstat_source_parses_command_output():
    completed = subprocess.CompletedProcess(["netstat", "-ano"], 0, stdout=WINDOWS_OUTPUT, stderr="")
    with patch("subprocess.run", return_value=completed) as run:
        records = NetstatConnectionSource(system="Windows").snapshot()
    assert run.call_args.args[0] == ["netstat", "-ano"]
    assert len(records) == 3


def test_netstat_source_survives_timeout():
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("netstat", 10)):
        assert NetstatConnectionSource(system="Linux").snapshot() == []


def test_netstat_probe_needs_the_command():
    with patch("shutil.which", return_value=None):
        with pytest.raises(MonitorStartError):
            NetstatConnectionSource(system="Linux").probe()


def test_process_source_reads_process_iter():
    procs = [
        SimpleNamespace(info={'pid': 1, 'name': 'init', 'cpu_percent': 0.5,
                              'memory_info': SimpleNamespace(rss=2048)}),
        SimpleNamespace(info={'pid': 2, 'name': None, 'cpu_percent': None, 'memory_info': None}),
    ]
    with patch("psutil.process_iter", return_value=procs):
        records = PsutilProcessSource().snapshot()

    assert [(r.pid, r.name, r.cpu, r.memory) for r in records] == [
        (1, 'init', 0.5, 2048),
        (2, 'N/A', 0.0, 0),
    ]


def test_process_source_returns_empty_on_failure():
    with patch("psutil.process_iter", side_effect=OSError("boom")):
        assert PsutilProcessSource().snapshot() == []


def test_build_sources_follows_backend():
    connections, processes = build_sources(MonitorConfig(backend="simulated"))
    assert isinstance(connections, SyntheticConnectionSource)
    assert isinstance(processes, SyntheticProcessSource)

    connections, processes = build_sources(MonitorConfig(backend="netstat"))
    assert isinstance(connections, NetstatConnectionSource)
    assert isinstance(processes, PsutilProcessSource)

    connections, _ = build_sources(MonitorConfig())
    assert isinstance(connections, PsutilConnectionSource)


def test_synthetic_flows_persist_between_snapshots():
    source = SyntheticConnectionSource(rng=random.Random(7), pool_size=20, churn=0.1)
    first = {r.key for r in source.snapshot()}
    second = {r.key for r in source.snapshot()}

    assert len(first) == len(second) == 20
    assert first & second


def test_synthetic_source_without_churn_is_stable():
    source = SyntheticConnectionSource(rng=random.Random(7), pool_size=5, churn=0.0)
    assert {r.key for r in source.snapshot()} == {r.key for r in source.snapshot()}
