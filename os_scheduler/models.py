from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Optional, Union

MIN_NICE = -20
MAX_NICE = 19
MIN_PRIORITY = 0
MAX_PRIORITY = 139
DEFAULT_TIME_SLICE_MS = 100


class InvalidInputError(ValueError):
    """Rejected input; no state was mutated."""


class SchedulerInvariantError(RuntimeError):
    """A scheduling invariant was broken. Always a programming error."""


class SchedulingPolicy(Enum):
    FIFO = "FIFO"
    ROUND_ROBIN = "Round Robin"
    TIME_SHARING = "Time Sharing"
    IDLE = "Idle"
    DEADLINE = "Deadline"


class LinuxClass(IntEnum):
    FOREGROUND = 0
    BACKGROUND = 1
    DAEMON = 2
    EMPTY = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


class AndroidClass(IntEnum):
    """Strict priority classes. Lower value always wins."""

    FOREGROUND = 0
    VISIBLE = 1
    SERVICE = 2
    BACKGROUND = 3
    CACHED = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()


class StrategyKind(Enum):
    LINUX = "linux"
    ANDROID = "android"


TaskClass = Union[LinuxClass, AndroidClass]


POLICY_TOKENS: Dict[str, SchedulingPolicy] = {
    "fifo": SchedulingPolicy.FIFO,
    "rr": SchedulingPolicy.ROUND_ROBIN,
    "ts": SchedulingPolicy.TIME_SHARING,
    "idle": SchedulingPolicy.IDLE,
    "deadline": SchedulingPolicy.DEADLINE,
}

LINUX_CLASS_TOKENS: Dict[str, LinuxClass] = {
    "fg": LinuxClass.FOREGROUND,
    "bg": LinuxClass.BACKGROUND,
    "daemon": LinuxClass.DAEMON,
    "empty": LinuxClass.EMPTY,
}

ANDROID_CLASS_TOKENS: Dict[str, AndroidClass] = {
    "fg": AndroidClass.FOREGROUND,
    "vis": AndroidClass.VISIBLE,
    "svc": AndroidClass.SERVICE,
    "bg": AndroidClass.BACKGROUND,
    "cache": AndroidClass.CACHED,
}


def _lookup(kind: str, token, table: dict, enum_type):
    if isinstance(token, enum_type):
        return token
    key = str(token).strip().lower()
    if key in table:
        return table[key]
    for member in enum_type:
        if key == member.name.lower():
            return member
    accepted = ", ".join(table)
    raise InvalidInputError(f"Unknown {kind} '{token}' (expected one of: {accepted})")


def parse_policy(token) -> SchedulingPolicy:
    return _lookup("policy", token, POLICY_TOKENS, SchedulingPolicy)


def parse_strategy_kind(token) -> StrategyKind:
    return _lookup("scheduler type", token, {k.value: k for k in StrategyKind}, StrategyKind)


def parse_task_class(token, kind: StrategyKind) -> TaskClass:
    """
    Parse a class token for the given strategy kind. The same token can mean
    different classes ("bg" is LinuxClass.BACKGROUND or AndroidClass.BACKGROUND).
    """
    if kind is StrategyKind.LINUX:
        return _lookup("linux class", token, LINUX_CLASS_TOKENS, LinuxClass)
    return _lookup("android class", token, ANDROID_CLASS_TOKENS, AndroidClass)


def derive_priority(policy: SchedulingPolicy, nice: int, task_class: TaskClass) -> int:
    """
    Map (policy, nice, class) to a numeric priority in [0, 139], lower runs sooner.
    """
    if policy in (SchedulingPolicy.FIFO, SchedulingPolicy.ROUND_ROBIN):
        priority = 99 - (nice + 20)
    elif policy is SchedulingPolicy.TIME_SHARING:
        priority = 120 + nice
    elif policy is SchedulingPolicy.IDLE:
        priority = MAX_PRIORITY
    else:
        priority = MIN_PRIORITY

    if isinstance(task_class, LinuxClass):
        if task_class is LinuxClass.BACKGROUND:
            priority += 5
        elif task_class is LinuxClass.DAEMON:
            priority -= 3
        elif task_class is LinuxClass.EMPTY:
            priority = MAX_PRIORITY

    return max(MIN_PRIORITY, min(MAX_PRIORITY, priority))


class Task:
    """
    One schedulable unit of work and its timing/statistics state.

    All times are virtual milliseconds. A completed task is terminal: any
    further call to run() raises SchedulerInvariantError.
    """

    def __init__(
        self,
        task_id: int,
        name: str,
        burst_time: int,
        arrival_time: int = 0,
        nice: int = 0,
        policy: SchedulingPolicy = SchedulingPolicy.TIME_SHARING,
        task_class: TaskClass = LinuxClass.FOREGROUND,
        time_slice: int = DEFAULT_TIME_SLICE_MS,
    ) -> None:
        if burst_time <= 0:
            raise InvalidInputError(f"burst time must be positive (got {burst_time})")
        if arrival_time < 0:
            raise InvalidInputError(f"arrival time cannot be negative (got {arrival_time})")
        if time_slice <= 0:
            raise InvalidInputError(f"time slice must be positive (got {time_slice})")
        _check_nice(nice)

        self.task_id = task_id
        self.name = name
        self.burst_time = burst_time
        self.remaining_time = burst_time
        self.arrival_time = arrival_time
        self.start_time: Optional[int] = None
        self.completion_time: Optional[int] = None

        self._nice = nice
        self._policy = policy
        self._task_class = task_class
        self.priority = derive_priority(policy, nice, task_class)
        self.time_slice = time_slice
        self.time_in_slice = 0

        self.is_started = False
        self.is_running = False
        self.is_completed = False

        self.wait_time = 0
        self.run_time = 0
        self.response_time: Optional[int] = None
        self.turnaround_time: Optional[int] = None
        self.preemption_count = 0

    def __repr__(self) -> str:
        return (
            f"Task(id={self.task_id}, name={self.name!r}, prio={self.priority}, "
            f"remaining={self.remaining_time})"
        )

    @property
    def nice(self) -> int:
        return self._nice

    @nice.setter
    def nice(self, value: int) -> None:
        _check_nice(value)
        self._nice = value
        self.update_priority()

    @property
    def policy(self) -> SchedulingPolicy:
        return self._policy

    @policy.setter
    def policy(self, value: SchedulingPolicy) -> None:
        self._policy = value
        self.update_priority()

    @property
    def task_class(self) -> TaskClass:
        return self._task_class

    @task_class.setter
    def task_class(self, value: TaskClass) -> None:
        self._task_class = value
        self.update_priority()

    @property
    def is_waiting(self) -> bool:
        return not self.is_running and not self.is_completed

    def update_priority(self) -> int:
        self.priority = derive_priority(self._policy, self._nice, self._task_class)
        return self.priority

    def run(self, quantum: int, now: int) -> int:
        """
        Execute for up to `quantum` ms starting at virtual time `now`.

        Returns the time actually consumed. The caller is responsible for the
        completion callback when this call finishes the task.
        """
        if self.is_completed:
            raise SchedulerInvariantError(f"task {self.task_id} already completed")
        if quantum <= 0:
            raise InvalidInputError(f"quantum must be positive (got {quantum})")

        if not self.is_started:
            self.is_started = True
            self.start_time = now
            self.response_time = now - self.arrival_time

        consumed = min(quantum, self.remaining_time)
        self.remaining_time -= consumed
        self.run_time += consumed
        self.time_in_slice += consumed

        if self.remaining_time == 0:
            self.completion_time = now + consumed
            self.turnaround_time = self.completion_time - self.arrival_time
            self.is_running = False
            self.is_completed = True

        return consumed

    def preempt(self) -> None:
        self.is_running = False
        self.time_in_slice = 0


def _check_nice(nice: int) -> None:
    if not MIN_NICE <= nice <= MAX_NICE:
        raise InvalidInputError(f"nice value must be in [{MIN_NICE}, {MAX_NICE}] (got {nice})")


@dataclass
class ScheduledSlice:
    """
    One contiguous slice of execution for a task in the Gantt chart.
    """

    task_id: int
    name: str
    start_time: int
    end_time: int


@dataclass
class TaskRecord:
    task_id: int
    name: str
    task_class: str
    policy: str
    arrival_time: int
    start_time: int
    completion_time: int
    burst_time: int
    wait_time: int
    response_time: int
    turnaround_time: int
    nice: int
    priority: int
    preemption_count: int

    @classmethod
    def from_task(cls, task: Task) -> "TaskRecord":
        if not task.is_completed:
            raise SchedulerInvariantError(f"task {task.task_id} has not completed")
        return cls(
            task_id=task.task_id,
            name=task.name,
            task_class=task.task_class.label,
            policy=task.policy.value,
            arrival_time=task.arrival_time,
            start_time=task.start_time,
            completion_time=task.completion_time,
            burst_time=task.burst_time,
            wait_time=task.wait_time,
            response_time=task.response_time,
            turnaround_time=task.turnaround_time,
            nice=task.nice,
            priority=task.priority,
            preemption_count=task.preemption_count,
        )


@dataclass
class SystemMetrics:
    cpu_busy_time: int
    makespan: int
    throughput: float
    cpu_utilization: float
    starvation_count: int = 0
