from __future__ import annotations

import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

from .config import MonitorConfig
from .importance import (
    NEUTRAL_KILL_PRIORITY,
    ImportanceSignals,
    ScoringPolicy,
    check_requested_priority,
    classify,
    importance_value,
    kill_priority_for,
    resource_group_for,
)
from .models import AndroidClass, InvalidInputError
from .system import EnforcementSink, ProcessProbe

logger = logging.getLogger(__name__)

LAUNCH_GROUPS = {
    "foreground": AndroidClass.FOREGROUND,
    "background": AndroidClass.BACKGROUND,
}


def _since(now: float, then: Optional[float]) -> Optional[float]:
    return None if then is None else now - then


def parse_priority_request(text: str) -> Tuple[int, int]:
    """
    Parse "PID VALUE" or "PID=VALUE" into integers.
    """
    parts = text.replace("=", " ").split()
    if len(parts) != 2:
        raise InvalidInputError(f"expected 'PID VALUE' or 'PID=VALUE' (got '{text}')")
    try:
        pid, value = int(parts[0]), int(parts[1])
    except ValueError:
        raise InvalidInputError(f"PID and priority must be integers (got '{text}')") from None
    return pid, check_requested_priority(value)


@dataclass
class TrackedProcess:
    pid: int
    name: str
    cmdline: str = ""
    state: AndroidClass = AndroidClass.BACKGROUND
    cpu_history: Deque[float] = field(default_factory=lambda: deque(maxlen=10))
    memory_history: Deque[int] = field(default_factory=lambda: deque(maxlen=10))
    last_active: float = 0.0
    last_foreground_time: Optional[float] = None
    last_network_activity: Optional[float] = None
    last_gpu_activity: Optional[float] = None
    last_disk_activity: Optional[float] = None
    requested_priority: int = 0
    importance_score: float = 0.0
    cgroup_path: str = ""
    is_system_service: bool = False
    is_playing_audio: bool = False
    oom_score: Optional[int] = None

    def average_cpu(self) -> float:
        if not self.cpu_history:
            return 0.0
        return sum(self.cpu_history) / len(self.cpu_history)

    def average_memory(self) -> float:
        if not self.memory_history:
            return 0.0
        return sum(self.memory_history) / len(self.memory_history)


@dataclass
class CycleReport:
    transitions: List[Tuple[int, AndroidClass, AndroidClass]] = field(default_factory=list)
    removed: List[int] = field(default_factory=list)
    evicted: List[int] = field(default_factory=list)
    failures: int = 0


class ProcessMonitor:
    """
    Periodic importance scoring and reclassification of live processes.

    The monitor exclusively owns its table of TrackedProcess entries. Every
    OS interaction goes through `probe` (reads) and `sink` (enforcement);
    failures there are logged and retried on the next cycle.
    """

    def __init__(
        self,
        probe: ProcessProbe,
        sink: EnforcementSink,
        config: Optional[MonitorConfig] = None,
        policy: Optional[ScoringPolicy] = None,
        time_source: Callable[[], float] = time.time,
    ) -> None:
        self.probe = probe
        self.sink = sink
        self.config = config or MonitorConfig()
        self.policy = policy or ScoringPolicy()
        self.time_source = time_source
        self.processes: Dict[int, TrackedProcess] = {}

    def group_for(self, cls: AndroidClass) -> str:
        return resource_group_for(cls, self.config.cgroup_root)

    def track(self, pid: int, initial_class: AndroidClass = AndroidClass.BACKGROUND) -> Optional[TrackedProcess]:
        if pid in self.processes:
            return self.processes[pid]
        if len(self.processes) >= self.config.max_processes:
            logger.warning("Process table full (%d), not tracking PID %d", self.config.max_processes, pid)
            return None

        size = self.config.history_size
        proc = TrackedProcess(
            pid=pid,
            name=self.probe.process_name(pid),
            cmdline=self.probe.command_line(pid),
            state=initial_class,
            cpu_history=deque(maxlen=size),
            memory_history=deque(maxlen=size),
            last_active=self.time_source(),
            is_system_service=self.probe.is_system_service(pid),
        )
        self.processes[pid] = proc
        logger.info("Tracking PID %d (%s) as %s", pid, proc.name, initial_class.label)
        self._reconcile(proc, CycleReport())
        return proc

    def attach_existing(self, exclude: Sequence[int] = ()) -> int:
        """
        Track every process currently visible to the probe.
        """
        skip = set(exclude) | {os.getpid()}
        attached = 0
        for pid in self.probe.list_pids():
            if pid in skip or pid in self.processes:
                continue
            if self.track(pid) is None:
                break
            attached += 1
        logger.info("Attached to %d existing processes", attached)
        return attached

    def launch(self, argv: Sequence[str], group: str) -> Optional[TrackedProcess]:
        if group not in LAUNCH_GROUPS:
            raise InvalidInputError(f"Invalid group '{group}'. Use 'foreground' or 'background'")
        if not argv:
            raise InvalidInputError(f"No command specified for {group} group")

        logger.info("Launching process '%s' in group %s", argv[0], group)
        pid = self.probe.launch_process(argv)
        if pid is None:
            return None
        proc = self.track(pid, LAUNCH_GROUPS[group])
        if proc is not None and group == "foreground":
            proc.last_foreground_time = self.time_source()
        return proc

    def request_priority(self, pid: int, value: int) -> None:
        check_requested_priority(value)
        proc = self.processes.get(pid)
        if proc is None:
            raise InvalidInputError(f"PID {pid} is not tracked")
        proc.requested_priority = value
        logger.info("PID %d (%s) requested priority %d", pid, proc.name, value)

    def check_priority_requests(self) -> int:
        """
        Apply pending requests from the request file, one "PID VALUE" per
        line. The file is consumed; bad lines are logged and skipped.
        Returns the number of requests applied.
        """
        if not self.config.request_path:
            return 0
        pending = Path(self.config.request_path)
        claimed = pending.with_name(pending.name + ".processing")
        try:
            pending.replace(claimed)
        except FileNotFoundError:
            return 0
        except OSError as exc:
            logger.warning("Could not read priority requests from %s: %s", pending, exc)
            return 0
        try:
            lines = claimed.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            logger.warning("Could not read priority requests from %s: %s", claimed, exc)
            return 0
        finally:
            claimed.unlink(missing_ok=True)

        applied = 0
        for line in lines:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                self.request_priority(*parse_priority_request(line))
            except InvalidInputError as exc:
                logger.warning("Ignoring priority request '%s': %s", line, exc)
                continue
            applied += 1
        return applied

    def signals_for(
        self,
        proc: TrackedProcess,
        now: float,
        focused: Optional[int],
        focused_parent: Optional[int],
        pressure: bool,
    ) -> ImportanceSignals:
        return ImportanceSignals(
            is_focused=focused is not None and proc.pid == focused,
            is_parent_of_focused=focused_parent is not None and proc.pid == focused_parent,
            is_system_service=proc.is_system_service,
            is_producing_audio=proc.is_playing_audio,
            seconds_since_gpu=_since(now, proc.last_gpu_activity),
            seconds_since_network=_since(now, proc.last_network_activity),
            seconds_since_disk=_since(now, proc.last_disk_activity),
            seconds_since_active=_since(now, proc.last_active),
            seconds_since_foreground=_since(now, proc.last_foreground_time),
            avg_cpu_percent=proc.average_cpu(),
            avg_memory_kb=proc.average_memory(),
            memory_pressure=pressure,
            requested_priority=proc.requested_priority,
        )

    def run_cycle(self) -> CycleReport:
        report = CycleReport()
        self.check_priority_requests()
        now = self.time_source()
        focused = self.probe.lookup_focused_process()
        focused_parent = self.probe.parent_of(focused) if focused is not None else None
        pressure = self.probe.memory_pressure()

        for pid in list(self.processes):
            proc = self.processes[pid]
            if not self.probe.exists(pid):
                del self.processes[pid]
                report.removed.append(pid)
                logger.debug("PID %d (%s) exited, no longer tracked", pid, proc.name)
                continue

            self._refresh(proc, now, focused)
            signals = self.signals_for(proc, now, focused, focused_parent, pressure)
            proc.importance_score = importance_value(signals, self.policy)
            target = classify(proc.importance_score, self.policy)
            if target != proc.state:
                self._transition(proc, target, report)
            self._reconcile(proc, report)

        if pressure:
            self._evict_idle(now, report)
        return report

    def run(self, cancel: threading.Event) -> None:
        logger.info("Process monitor running every %.1fs", self.config.interval)
        try:
            while not cancel.is_set():
                try:
                    self.run_cycle()
                except Exception:
                    logger.exception("Monitoring cycle failed, retrying in %.1fs", self.config.interval)
                cancel.wait(self.config.interval)
        finally:
            logger.info("Process monitor shutting down")
            self.cleanup()

    def cleanup(self) -> int:
        """
        Reset every tracked process to the neutral group and kill priority.
        Returns the number of failed resets.
        """
        failures = 0
        root = self.config.cgroup_root
        for proc in list(self.processes.values()):
            if not self.sink.assign_resource_group(root, proc.pid):
                failures += 1
                logger.warning("Could not reset PID %d (%s) to %s", proc.pid, proc.name, root)
            if not self.sink.set_kill_priority(proc.pid, NEUTRAL_KILL_PRIORITY):
                failures += 1
                logger.warning("Could not reset OOM score of PID %d (%s)", proc.pid, proc.name)
        return failures

    def dump(self) -> None:
        logger.info("Tracking %d processes", len(self.processes))
        for proc in sorted(self.processes.values(), key=lambda p: (p.state, p.importance_score)):
            logger.info(
                "  PID %-7d %-10s score=%7.2f cpu=%5.1f%% mem=%dkB oom=%s %s",
                proc.pid,
                proc.state.label,
                proc.importance_score,
                proc.average_cpu(),
                int(proc.average_memory()),
                proc.oom_score,
                proc.name,
            )

    def _refresh(self, proc: TrackedProcess, now: float, focused: Optional[int]) -> None:
        pid = proc.pid
        cpu = self.probe.read_cpu_percent(pid)
        proc.cpu_history.append(cpu)
        proc.memory_history.append(self.probe.read_memory_kb(pid))
        proc.is_playing_audio = self.probe.is_producing_audio(pid)

        if cpu >= self.config.activity_cpu_percent or proc.is_playing_audio:
            proc.last_active = now
        if focused is not None and pid == focused:
            proc.last_foreground_time = now
            proc.last_active = now
        if self.probe.is_using_gpu(pid):
            proc.last_gpu_activity = now
        if self.probe.is_using_network(pid):
            proc.last_network_activity = now
        if self.probe.is_using_disk(pid):
            proc.last_disk_activity = now

    def _transition(self, proc: TrackedProcess, target: AndroidClass, report: CycleReport) -> None:
        group = self.group_for(target)
        if not self.sink.assign_resource_group(group, proc.pid):
            report.failures += 1
            logger.warning(
                "Failed to move PID %d (%s) from %s to %s",
                proc.pid,
                proc.name,
                proc.state.label,
                target.label,
            )
            return
        previous = proc.state
        proc.state = target
        proc.cgroup_path = group
        report.transitions.append((proc.pid, previous, target))
        logger.info(
            "PID %d (%s) %s -> %s (score %.2f)",
            proc.pid,
            proc.name,
            previous.label,
            target.label,
            proc.importance_score,
        )

    def _reconcile(self, proc: TrackedProcess, report: CycleReport) -> None:
        """
        Retry enforcement that previously failed for the current class.
        """
        group = self.group_for(proc.state)
        if proc.cgroup_path != group:
            if self.sink.assign_resource_group(group, proc.pid):
                proc.cgroup_path = group
            else:
                report.failures += 1
                logger.warning("Failed to assign PID %d (%s) to %s", proc.pid, proc.name, group)

        wanted = kill_priority_for(proc.state)
        if proc.oom_score != wanted:
            if self.sink.set_kill_priority(proc.pid, wanted):
                proc.oom_score = wanted
            else:
                report.failures += 1
                logger.warning(
                    "Failed to set OOM score %d for PID %d (%s, %s)",
                    wanted,
                    proc.pid,
                    proc.name,
                    proc.state.label,
                )

    def _evict_idle(self, now: float, report: CycleReport) -> None:
        threshold = self.config.idle_eviction_seconds
        for pid, proc in list(self.processes.items()):
            if proc.state is not AndroidClass.CACHED or now - proc.last_active <= threshold:
                continue
            if self.sink.terminate(pid):
                del self.processes[pid]
                report.evicted.append(pid)
                logger.info("Evicted cached PID %d (%s), idle %.0fs", pid, proc.name, now - proc.last_active)
            else:
                report.failures += 1
                logger.warning("Failed to terminate cached PID %d (%s)", pid, proc.name)
