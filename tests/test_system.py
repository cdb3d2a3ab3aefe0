import os
import sys
import time

from os_scheduler.system import PsutilProbe


def test_exited_child_is_reaped_and_reported_gone():
    probe = PsutilProbe()
    pid = probe.launch_process([sys.executable, "-c", "pass"])
    assert pid is not None

    deadline = time.monotonic() + 10
    while probe.exists(pid) and time.monotonic() < deadline:
        time.sleep(0.05)

    assert not probe.exists(pid)
    assert pid not in probe._children


def test_running_process_exists():
    probe = PsutilProbe()
    assert probe.exists(os.getpid())


def test_launch_failure_returns_none():
    probe = PsutilProbe()
    assert probe.launch_process(["/nonexistent/definitely-not-a-binary"]) is None
