"""
Operating-system collaborators used by the live monitor.

These wrappers carry no scheduling logic. Every call is best-effort: OS
errors are logged and turned into a neutral return value so a monitoring
cycle is never aborted by a vanished process or a missing permission.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence

import psutil

logger = logging.getLogger(__name__)

AUDIO_DEVICE_PREFIXES = ("/dev/snd/pcm",)
GPU_DEVICE_PREFIXES = ("/dev/dri/", "/dev/nvidia")
SYSTEM_UID_LIMIT = 1000


class ProcessProbe(Protocol):
    def list_pids(self) -> List[int]: ...

    def exists(self, pid: int) -> bool: ...

    def process_name(self, pid: int) -> str: ...

    def command_line(self, pid: int) -> str: ...

    def lookup_focused_process(self) -> Optional[int]: ...

    def read_cpu_percent(self, pid: int) -> float: ...

    def read_memory_kb(self, pid: int) -> int: ...

    def is_producing_audio(self, pid: int) -> bool: ...

    def is_using_gpu(self, pid: int) -> bool: ...

    def is_using_network(self, pid: int) -> bool: ...

    def is_using_disk(self, pid: int) -> bool: ...

    def is_system_service(self, pid: int) -> bool: ...

    def parent_of(self, pid: int) -> Optional[int]: ...

    def memory_pressure(self) -> bool: ...

    def launch_process(self, argv: Sequence[str]) -> Optional[int]: ...


class EnforcementSink(Protocol):
    def assign_resource_group(self, group: str, pid: int) -> bool: ...

    def set_kill_priority(self, pid: int, value: int) -> bool: ...

    def terminate(self, pid: int) -> bool: ...


class PsutilProbe:
    """
    ProcessProbe backed by psutil and a few /proc reads.
    """

    def __init__(self, low_memory_percent: float = 15.0, proc_root: str = "/proc") -> None:
        self.low_memory_percent = low_memory_percent
        self.proc_root = Path(proc_root)
        # cpu_percent() needs the same Process object between calls.
        self._handles: dict[int, psutil.Process] = {}
        self._io_bytes: dict[int, int] = {}
        # Children we started must be waited on or they linger as zombies.
        self._children: dict[int, subprocess.Popen] = {}

    def _handle(self, pid: int) -> psutil.Process:
        proc = self._handles.get(pid)
        if proc is None or not proc.is_running():
            proc = psutil.Process(pid)
            proc.cpu_percent(None)
            self._handles[pid] = proc
        return proc

    def forget(self, pid: int) -> None:
        self._handles.pop(pid, None)
        self._io_bytes.pop(pid, None)

    def list_pids(self) -> List[int]:
        return psutil.pids()

    def exists(self, pid: int) -> bool:
        child = self._children.get(pid)
        if child is not None and child.poll() is not None:
            logger.info("Launched PID %d exited with status %d", pid, child.returncode)
            del self._children[pid]
            self.forget(pid)
            return False
        try:
            alive = psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            alive = False
        except psutil.AccessDenied:
            alive = psutil.pid_exists(pid)
        if not alive:
            self.forget(pid)
        return alive

    def process_name(self, pid: int) -> str:
        try:
            return self._handle(pid).name()
        except psutil.Error as exc:
            logger.debug("name lookup failed for %d: %s", pid, exc)
            return f"pid-{pid}"

    def command_line(self, pid: int) -> str:
        try:
            return " ".join(self._handle(pid).cmdline())
        except psutil.Error as exc:
            logger.debug("cmdline lookup failed for %d: %s", pid, exc)
            return ""

    def lookup_focused_process(self) -> Optional[int]:
        try:
            out = subprocess.run(
                ["xdotool", "getactivewindow", "getwindowpid"],
                capture_output=True,
                text=True,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError) as exc:
            logger.debug("focused window lookup failed: %s", exc)
            return None
        try:
            return int(out.stdout.strip())
        except ValueError:
            return None

    def read_cpu_percent(self, pid: int) -> float:
        try:
            return self._handle(pid).cpu_percent(None)
        except psutil.Error as exc:
            logger.debug("cpu read failed for %d: %s", pid, exc)
            return 0.0

    def read_memory_kb(self, pid: int) -> int:
        try:
            return self._handle(pid).memory_info().rss // 1024
        except psutil.Error as exc:
            logger.debug("memory read failed for %d: %s", pid, exc)
            return 0

    def _fd_targets(self, pid: int) -> Iterable[str]:
        fd_dir = self.proc_root / str(pid) / "fd"
        try:
            entries = list(fd_dir.iterdir())
        except OSError:
            return []
        targets = []
        for entry in entries:
            try:
                targets.append(os.readlink(entry))
            except OSError:
                continue
        return targets

    def _has_device(self, pid: int, prefixes: Sequence[str]) -> bool:
        return any(target.startswith(prefixes) for target in self._fd_targets(pid))

    def is_producing_audio(self, pid: int) -> bool:
        # Playback PCM devices end with "p" (e.g. /dev/snd/pcmC0D0p).
        return any(
            target.startswith(AUDIO_DEVICE_PREFIXES) and target.endswith("p")
            for target in self._fd_targets(pid)
        )

    def is_using_gpu(self, pid: int) -> bool:
        return self._has_device(pid, GPU_DEVICE_PREFIXES)

    def is_using_network(self, pid: int) -> bool:
        try:
            conns = self._handle(pid).net_connections(kind="inet")
        except psutil.Error as exc:
            logger.debug("connection lookup failed for %d: %s", pid, exc)
            return False
        return any(c.status == psutil.CONN_ESTABLISHED for c in conns)

    def is_using_disk(self, pid: int) -> bool:
        """
        True when the process read or wrote bytes since the previous call.
        The first call only records a baseline.
        """
        try:
            io = self._handle(pid).io_counters()
        except (psutil.Error, AttributeError) as exc:
            # io_counters() is missing on some platforms (macOS).
            logger.debug("io counters unavailable for %d: %s", pid, exc)
            return False
        total = io.read_bytes + io.write_bytes
        previous = self._io_bytes.get(pid)
        self._io_bytes[pid] = total
        return previous is not None and total != previous

    def is_system_service(self, pid: int) -> bool:
        try:
            return self._handle(pid).uids().real < SYSTEM_UID_LIMIT
        except psutil.Error as exc:
            logger.debug("service check failed for %d: %s", pid, exc)
            return False

    def parent_of(self, pid: int) -> Optional[int]:
        try:
            ppid = self._handle(pid).ppid()
        except psutil.Error:
            return None
        return ppid or None

    def memory_pressure(self) -> bool:
        mem = psutil.virtual_memory()
        available = mem.available * 100.0 / mem.total if mem.total else 100.0
        return available < self.low_memory_percent

    def launch_process(self, argv: Sequence[str]) -> Optional[int]:
        try:
            child = subprocess.Popen(list(argv))
        except OSError as exc:
            logger.error("Failed to launch %s: %s", " ".join(argv), exc)
            return None
        logger.info("Process started with PID %d", child.pid)
        self._children[child.pid] = child
        return child.pid


class CgroupEnforcer:
    """
    EnforcementSink writing to the cgroup filesystem and /proc.
    """

    def __init__(self, root: str = "/sys/fs/cgroup", proc_root: str = "/proc") -> None:
        self.root = Path(root)
        self.proc_root = Path(proc_root)

    def setup_groups(self, groups: Iterable[str]) -> None:
        for group in groups:
            try:
                Path(group).mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.warning("Could not create cgroup %s: %s", group, exc)

    def assign_resource_group(self, group: str, pid: int) -> bool:
        try:
            (Path(group) / "cgroup.procs").write_text(f"{pid}\n", encoding="utf-8")
        except OSError as exc:
            logger.debug("cgroup write failed for %d -> %s: %s", pid, group, exc)
            return False
        return True

    def set_kill_priority(self, pid: int, value: int) -> bool:
        try:
            (self.proc_root / str(pid) / "oom_score_adj").write_text(f"{value}\n", encoding="utf-8")
        except OSError as exc:
            logger.debug("oom_score_adj write failed for %d: %s", pid, exc)
            return False
        return True

    def terminate(self, pid: int) -> bool:
        try:
            psutil.Process(pid).terminate()
        except psutil.Error as exc:
            logger.debug("terminate failed for %d: %s", pid, exc)
            return False
        return True


class DryRunEnforcer:
    """
    EnforcementSink that only logs what it would do.
    """

    def setup_groups(self, groups: Iterable[str]) -> None:
        for group in groups:
            logger.info("Would create cgroup %s", group)

    def assign_resource_group(self, group: str, pid: int) -> bool:
        logger.info("Would assign PID %d to cgroup %s", pid, group)
        return True

    def set_kill_priority(self, pid: int, value: int) -> bool:
        logger.info("Would set OOM score for PID %d to %d", pid, value)
        return True

    def terminate(self, pid: int) -> bool:
        logger.info("Would terminate PID %d", pid)
        return True
