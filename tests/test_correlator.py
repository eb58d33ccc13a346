from netflowmon.core.correlator import ABSENT, PENDING, PRESENT, ProcessCorrelator
from netflowmon.core.diff_engine import flow_event_from_connection

from fakes import conn, proc


def test_update_counts_connections_per_pid():
    correlator = ProcessCorrelator()
    processes = [proc(10, "chrome.exe"), proc(20, "code.exe"), proc(30, "idle")]
    connections = [conn(local_port=5001, pid=10), conn(local_port=5002, pid=10),
                   conn(local_port=5003, pid=20), conn(local_port=5004, pid=None)]

    correlator.update(processes, connections)

    assert [p.connection_count for p in processes] == [2, 1, 0]


def test_annotate_sets_process_names():
    correlator = ProcessCorrelator()
    correlator.update([proc(10, "chrome.exe")], [])
    known, unknown = conn(pid=10), conn(pid=99)
    event = flow_event_from_connection(conn(pid=10))

    correlator.annotate([known, unknown, event])

    assert known.process_name == "chrome.exe"
    assert unknown.process_name is None
    assert event.process_name == "chrome.exe"


def test_global_scope_passes_processes_through():
    correlator = ProcessCorrelator()
    processes = [proc(1), proc(2)]
    assert correlator.scope_processes(processes, None) == processes


def test_target_status_distinguishes_absent_from_not_polled():
    correlator = ProcessCorrelator()
    assert correlator.target_status == PENDING

    assert correlator.scope_processes([proc(1), proc(2)], 3) == []
    assert correlator.target_status == ABSENT

    scoped = correlator.scope_processes([proc(1), proc(3)], 3)
    assert [p.pid for p in scoped] == [3]
    assert correlator.target_status == PRESENT

    correlator.reset()
    assert correlator.target_status == PENDING
    assert correlator.name_for(3) is None
