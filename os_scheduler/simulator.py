from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .clock import SimulationClock
from .config import SimulatorConfig
from .models import (
    InvalidInputError,
    SchedulingPolicy,
    StrategyKind,
    Task,
    TaskClass,
    TaskRecord,
    parse_policy,
    parse_strategy_kind,
    parse_task_class,
)
from .strategies import SchedulingStrategy, StrategySnapshot, make_strategy
from .workload_io import WorkloadEntry, append_record

logger = logging.getLogger(__name__)


class Simulator:
    """
    Owns one strategy and one virtual clock per scheduler type and hands out
    task ids. This is the surface used by the command shell and the CLI.
    """

    def __init__(self, config: Optional[SimulatorConfig] = None) -> None:
        self.config = config or SimulatorConfig()
        self.clocks: Dict[StrategyKind, SimulationClock] = {}
        self.strategies: Dict[StrategyKind, SchedulingStrategy] = {}
        for kind in StrategyKind:
            clock = SimulationClock(self.config.tick_ms)
            self.clocks[kind] = clock
            self.strategies[kind] = make_strategy(kind, clock, on_complete=self._persist)
        self.current_kind = StrategyKind.LINUX
        self._tasks: Dict[int, Task] = {}
        self._next_id = 1

    def _kind(self, kind) -> StrategyKind:
        return self.current_kind if kind is None else parse_strategy_kind(kind)

    def select_strategy(self, kind) -> StrategyKind:
        self.current_kind = parse_strategy_kind(kind)
        return self.current_kind

    def strategy(self, kind=None) -> SchedulingStrategy:
        return self.strategies[self._kind(kind)]

    def now(self, kind=None) -> int:
        return self.clocks[self._kind(kind)].now

    def create_task(
        self,
        name: str,
        burst_ms: int,
        nice: int = 0,
        policy: SchedulingPolicy | str = SchedulingPolicy.TIME_SHARING,
        task_class: TaskClass | str = "fg",
        strategy_kind=None,
    ) -> int:
        """
        Create a task arriving at the strategy's current virtual time and
        return its id. Invalid input raises InvalidInputError before any
        state changes.
        """
        kind = self._kind(strategy_kind)
        if not name:
            raise InvalidInputError("task name cannot be empty")
        task = Task(
            task_id=self._next_id,
            name=name,
            burst_time=burst_ms,
            arrival_time=self.clocks[kind].now,
            nice=nice,
            policy=parse_policy(policy),
            task_class=parse_task_class(task_class, kind),
            time_slice=self.config.time_slice_ms,
        )
        self.strategies[kind].add(task)
        self._tasks[task.task_id] = task
        self._next_id += 1
        logger.info(
            "Created task %d (%s) on %s: burst=%dms nice=%d policy=%s class=%s priority=%d",
            task.task_id,
            task.name,
            kind.value,
            task.burst_time,
            task.nice,
            task.policy.value,
            task.task_class.label,
            task.priority,
        )
        return task.task_id

    def task(self, task_id: int) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise InvalidInputError(f"No task with id {task_id}") from None

    def tasks(self, kind=None) -> List[Task]:
        return self.strategy(kind).tasks

    def advance(self, kind=None, quantum_ms: Optional[int] = None) -> int:
        kind = self._kind(kind)
        quantum_ms = self.config.tick_ms if quantum_ms is None else quantum_ms
        if quantum_ms <= 0:
            raise InvalidInputError(f"step must be positive (got {quantum_ms})")
        return self.clocks[kind].advance(self.strategies[kind], quantum_ms)

    def run_to_completion(self, kind=None) -> int:
        kind = self._kind(kind)
        return self.clocks[kind].run_until_idle(self.strategies[kind])

    def run_workload(self, entries: Iterable[WorkloadEntry], kind=None) -> List[TaskRecord]:
        """
        Replay a workload: advance to each arrival, create the task, then run
        everything to completion. Entries pinned to another scheduler type
        are skipped.
        """
        kind = self._kind(kind)
        clock = self.clocks[kind]
        base = clock.now
        for entry in sorted(entries, key=lambda e: e.arrival_time):
            if entry.strategy is not None and parse_strategy_kind(entry.strategy) is not kind:
                continue
            target = base + entry.arrival_time
            if target > clock.now:
                self.advance(kind, target - clock.now)
            self.create_task(
                entry.name,
                entry.burst_time,
                nice=entry.nice,
                policy=entry.policy,
                task_class=entry.task_class,
                strategy_kind=kind,
            )
        self.run_to_completion(kind)
        return self.stats(kind)

    def snapshot(self, kind=None) -> StrategySnapshot:
        return self.strategy(kind).snapshot()

    def stats(self, kind=None) -> List[TaskRecord]:
        return [TaskRecord.from_task(t) for t in self.strategy(kind).completed]

    def _persist(self, task: Task) -> None:
        path = self.config.records_path
        if not path:
            return
        try:
            append_record(path, TaskRecord.from_task(task))
        except OSError as exc:
            logger.warning("Could not write record for task %d to %s: %s", task.task_id, path, exc)
