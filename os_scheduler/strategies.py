from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional

from .clock import SimulationClock
from .models import (
    AndroidClass,
    InvalidInputError,
    LinuxClass,
    ScheduledSlice,
    SchedulerInvariantError,
    SchedulingPolicy,
    StrategyKind,
    Task,
)

logger = logging.getLogger(__name__)

CompletionHook = Callable[[Task], None]

SLICED_POLICIES = (SchedulingPolicy.ROUND_ROBIN, SchedulingPolicy.TIME_SHARING)


@dataclass
class StrategySnapshot:
    """
    Ordered view of a strategy's queues and its running task at one instant.
    """

    kind: StrategyKind
    name: str
    now: int
    running: Optional[Task]
    queues: Dict[str, List[Task]] = field(default_factory=dict)
    completed: List[Task] = field(default_factory=list)


class SchedulingStrategy(ABC):
    """
    Common contract for both strategies: add, get_next, tick, snapshot.

    A strategy owns its tasks exclusively. All public operations hold one
    re-entrant lock per instance so that ticks never interleave.
    """

    kind: StrategyKind
    name: str

    def __init__(self, clock: SimulationClock, on_complete: Optional[CompletionHook] = None) -> None:
        self.clock = clock
        self.current: Optional[Task] = None
        self.completed: List[Task] = []
        self.timeline: List[ScheduledSlice] = []
        self._tasks: List[Task] = []
        self._on_complete = on_complete
        self._lock = threading.RLock()

    # -- subclass hooks -------------------------------------------------

    @abstractmethod
    def _check_class(self, task: Task) -> None:
        """Reject tasks whose class tag belongs to the other strategy."""

    @abstractmethod
    def _enqueue(self, task: Task) -> None:
        ...

    @abstractmethod
    def _dequeue(self) -> Optional[Task]:
        ...

    @abstractmethod
    def _requeue(self, task: Task) -> None:
        """Put a preempted task back into the ready structure."""

    @abstractmethod
    def _is_outranked(self, task: Task) -> bool:
        """True when a ready task must run instead of `task` right now."""

    @abstractmethod
    def _should_preempt(self, task: Task) -> bool:
        ...

    @abstractmethod
    def _has_ready(self) -> bool:
        ...

    @abstractmethod
    def _queue_view(self) -> Dict[str, List[Task]]:
        ...

    # -- public contract ------------------------------------------------

    @property
    def tasks(self) -> List[Task]:
        return list(self._tasks)

    def add(self, task: Task) -> None:
        with self._lock:
            self._check_class(task)
            if task.is_completed or task.is_running:
                raise InvalidInputError(f"task {task.task_id} cannot be added in its current state")
            if any(t.task_id == task.task_id for t in self._tasks):
                raise InvalidInputError(f"task id {task.task_id} already scheduled")
            self._tasks.append(task)
            self._enqueue(task)
            logger.debug("%s: added %r", self.name, task)

    def get_next(self) -> Optional[Task]:
        """
        Return the running task, selecting one from the ready queue(s) if
        nothing is running. Calling this repeatedly without a tick is a no-op.
        """
        with self._lock:
            if self.current is not None and self.current.is_running and not self.current.is_completed:
                return self.current
            task = self._dequeue()
            if task is None:
                return None
            self._mark_running(task)
            return task

    def tick(self, quantum: int) -> Optional[Task]:
        """
        Advance this strategy by one quantum at the clock's current time.

        Returns the task that ran during the tick, or None when idle.
        """
        if quantum <= 0:
            raise InvalidInputError(f"quantum must be positive (got {quantum})")
        with self._lock:
            now = self.clock.now
            current = self.get_next()
            if current is not None and self._is_outranked(current):
                # A better task arrived since the last tick.
                self._preempt(current)
                current = self.get_next()

            for task in self._tasks:
                if task is not current and not task.is_completed:
                    task.wait_time += quantum

            if current is None:
                return None

            consumed = current.run(quantum, now)
            self._record_slice(current, now, now + consumed)

            if current.is_completed:
                self.task_completed(current)
                return current

            if self._should_preempt(current):
                self._preempt(current)
                self.get_next()
            elif current.time_in_slice >= current.time_slice:
                # No competitor for this slice: start a fresh one.
                current.time_in_slice = 0
            return current

    def task_completed(self, task: Task) -> None:
        with self._lock:
            if not task.is_completed:
                raise SchedulerInvariantError(f"task {task.task_id} reported complete while unfinished")
            if any(t is task for t in self.completed):
                raise SchedulerInvariantError(f"task {task.task_id} completed twice")
            self.completed.append(task)
            if self.current is task:
                self.current = None
            logger.debug("%s: task %d (%s) completed at %s", self.name, task.task_id, task.name, task.completion_time)
            if self._on_complete is not None:
                self._on_complete(task)

    def is_idle(self) -> bool:
        with self._lock:
            running = self.current is not None and self.current.is_running
            return not running and not self._has_ready()

    def snapshot(self) -> StrategySnapshot:
        with self._lock:
            running = self.current if self.current is not None and self.current.is_running else None
            return StrategySnapshot(
                kind=self.kind,
                name=self.name,
                now=self.clock.now,
                running=running,
                queues=self._queue_view(),
                completed=list(self.completed),
            )

    # -- internals -------------------------------------------------------

    def _mark_running(self, task: Task) -> None:
        for other in self._tasks:
            if other.is_running and other is not task:
                raise SchedulerInvariantError(
                    f"{self.name}: cannot run task {task.task_id} while task {other.task_id} is running"
                )
        task.is_running = True
        self.current = task

    def _preempt(self, task: Task) -> None:
        task.preempt()
        task.preemption_count += 1
        self.current = None
        self._requeue(task)
        logger.debug("%s: preempted %r (count=%d)", self.name, task, task.preemption_count)

    def _record_slice(self, task: Task, start: int, end: int) -> None:
        last = self.timeline[-1] if self.timeline else None
        if last is not None and last.task_id == task.task_id and last.end_time == start:
            last.end_time = end
        else:
            self.timeline.append(ScheduledSlice(task_id=task.task_id, name=task.name, start_time=start, end_time=end))


class PriorityQueueStrategy(SchedulingStrategy):
    """
    Global dynamic-priority queue (Linux-like).

    One ready list ordered by (priority, arrival_time); equal priorities go
    to the earlier arrival, then the lower id.

    The order is strict, so it does not rotate equal-priority tasks. A round
    robin or time sharing task whose slice expires while it ties with the
    head of the ready list is counted as preempted and then selected again
    at once. Round robin only hands the CPU over when a strictly better task
    is waiting.
    """

    kind = StrategyKind.LINUX
    name = "Linux"

    def __init__(self, clock: SimulationClock, on_complete: Optional[CompletionHook] = None) -> None:
        super().__init__(clock, on_complete)
        self._ready: List[Task] = []

    def _check_class(self, task: Task) -> None:
        if not isinstance(task.task_class, LinuxClass):
            raise InvalidInputError(
                f"task {task.task_id}: class {task.task_class.label} is not a Linux class"
            )

    def _sort(self) -> None:
        self._ready.sort(key=lambda t: (t.priority, t.arrival_time, t.task_id))

    def _enqueue(self, task: Task) -> None:
        self._ready.append(task)
        self._sort()

    def _dequeue(self) -> Optional[Task]:
        if not self._ready:
            return None
        return self._ready.pop(0)

    def _requeue(self, task: Task) -> None:
        self._enqueue(task)

    def _is_outranked(self, task: Task) -> bool:
        return bool(self._ready) and self._ready[0].priority < task.priority

    def _should_preempt(self, task: Task) -> bool:
        if not self._ready:
            return False
        if task.policy in SLICED_POLICIES and task.time_in_slice >= task.time_slice:
            return True
        return self._is_outranked(task)

    def _has_ready(self) -> bool:
        return bool(self._ready)

    def _queue_view(self) -> Dict[str, List[Task]]:
        return {"ready": list(self._ready)}


class StrictClassStrategy(SchedulingStrategy):
    """
    Five strict-priority FIFO queues (Android-like).

    A lower class rank always wins; round robin only happens inside a class.
    """

    kind = StrategyKind.ANDROID
    name = "Android"

    def __init__(self, clock: SimulationClock, on_complete: Optional[CompletionHook] = None) -> None:
        super().__init__(clock, on_complete)
        self._queues: Dict[AndroidClass, Deque[Task]] = {cls: deque() for cls in AndroidClass}

    def _check_class(self, task: Task) -> None:
        if not isinstance(task.task_class, AndroidClass):
            raise InvalidInputError(
                f"task {task.task_id}: class {task.task_class.label} is not an Android class"
            )

    def _enqueue(self, task: Task) -> None:
        self._queues[task.task_class].append(task)

    def _dequeue(self) -> Optional[Task]:
        for cls in AndroidClass:
            queue = self._queues[cls]
            if queue:
                return queue.popleft()
        return None

    def _requeue(self, task: Task) -> None:
        self._queues[task.task_class].append(task)

    def _is_outranked(self, task: Task) -> bool:
        return any(self._queues[cls] for cls in AndroidClass if cls < task.task_class)

    def _should_preempt(self, task: Task) -> bool:
        if self._is_outranked(task):
            return True
        return task.time_in_slice >= task.time_slice and bool(self._queues[task.task_class])

    def _has_ready(self) -> bool:
        return any(self._queues.values())

    def _queue_view(self) -> Dict[str, List[Task]]:
        return {cls.label: list(self._queues[cls]) for cls in AndroidClass}


STRATEGIES = {
    StrategyKind.LINUX: PriorityQueueStrategy,
    StrategyKind.ANDROID: StrictClassStrategy,
}


def make_strategy(
    kind: StrategyKind,
    clock: Optional[SimulationClock] = None,
    on_complete: Optional[CompletionHook] = None,
) -> SchedulingStrategy:
    """
    Build the strategy registered for `kind`.
    """
    if kind not in STRATEGIES:
        raise InvalidInputError(f"Unknown scheduler type '{kind}'")
    return STRATEGIES[kind](clock or SimulationClock(), on_complete)
