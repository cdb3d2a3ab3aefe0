import pytest

from os_scheduler.models import (
    AndroidClass,
    InvalidInputError,
    LinuxClass,
    SchedulerInvariantError,
    SchedulingPolicy,
    StrategyKind,
    Task,
    TaskRecord,
    derive_priority,
    parse_policy,
    parse_strategy_kind,
    parse_task_class,
)


@pytest.mark.parametrize(
    "policy, nice, cls, expected",
    [
        (SchedulingPolicy.TIME_SHARING, 0, LinuxClass.FOREGROUND, 120),
        (SchedulingPolicy.TIME_SHARING, -10, LinuxClass.FOREGROUND, 110),
        (SchedulingPolicy.FIFO, 0, LinuxClass.FOREGROUND, 79),
        (SchedulingPolicy.ROUND_ROBIN, -20, LinuxClass.FOREGROUND, 99),
        (SchedulingPolicy.IDLE, -20, LinuxClass.FOREGROUND, 139),
        (SchedulingPolicy.DEADLINE, 5, LinuxClass.FOREGROUND, 0),
        (SchedulingPolicy.TIME_SHARING, 0, LinuxClass.BACKGROUND, 125),
        (SchedulingPolicy.TIME_SHARING, 0, LinuxClass.DAEMON, 117),
        (SchedulingPolicy.FIFO, 0, LinuxClass.EMPTY, 139),
        (SchedulingPolicy.TIME_SHARING, 19, LinuxClass.BACKGROUND, 139),
        (SchedulingPolicy.DEADLINE, 0, LinuxClass.DAEMON, 0),
        (SchedulingPolicy.TIME_SHARING, 0, AndroidClass.CACHED, 120),
    ],
)
def test_derive_priority(policy, nice, cls, expected):
    assert derive_priority(policy, nice, cls) == expected


def test_priority_follows_attribute_changes():
    t = Task(1, "t", burst_time=50)
    assert t.priority == 120
    t.nice = 5
    assert t.priority == 125
    t.task_class = LinuxClass.BACKGROUND
    assert t.priority == 130
    t.policy = SchedulingPolicy.IDLE
    assert t.priority == 139


def test_run_sets_timestamps_and_completes():
    t = Task(1, "t", burst_time=30, arrival_time=5)
    assert t.run(10, now=20) == 10
    assert t.start_time == 20
    assert t.response_time == 15
    assert t.remaining_time == 20
    assert not t.is_completed

    assert t.run(25, now=30) == 20
    assert t.is_completed
    assert t.remaining_time == 0
    assert t.completion_time == 50
    assert t.turnaround_time == 45
    assert t.completion_time >= t.start_time >= t.arrival_time


def test_completed_task_is_terminal():
    t = Task(1, "t", burst_time=10)
    t.run(10, now=0)
    with pytest.raises(SchedulerInvariantError):
        t.run(10, now=10)


def test_preempt_keeps_remaining_time():
    t = Task(1, "t", burst_time=100)
    t.is_running = True
    t.run(40, now=0)
    t.preempt()
    assert not t.is_running
    assert t.time_in_slice == 0
    assert t.remaining_time == 60


@pytest.mark.parametrize("nice", [-21, 20])
def test_nice_out_of_range_rejected(nice):
    with pytest.raises(InvalidInputError):
        Task(1, "t", burst_time=10, nice=nice)


def test_non_positive_burst_rejected():
    with pytest.raises(InvalidInputError):
        Task(1, "t", burst_time=0)


def test_token_parsing():
    assert parse_policy("rr") is SchedulingPolicy.ROUND_ROBIN
    assert parse_policy("deadline") is SchedulingPolicy.DEADLINE
    assert parse_strategy_kind("Android") is StrategyKind.ANDROID
    assert parse_task_class("bg", StrategyKind.LINUX) is LinuxClass.BACKGROUND
    assert parse_task_class("bg", StrategyKind.ANDROID) is AndroidClass.BACKGROUND
    assert parse_task_class("cache", StrategyKind.ANDROID) is AndroidClass.CACHED
    assert parse_task_class("visible", StrategyKind.ANDROID) is AndroidClass.VISIBLE


@pytest.mark.parametrize(
    "call",
    [
        lambda: parse_policy("lottery"),
        lambda: parse_strategy_kind("windows"),
        lambda: parse_task_class("vis", StrategyKind.LINUX),
        lambda: parse_task_class("daemon", StrategyKind.ANDROID),
    ],
)
def test_unknown_tokens_rejected(call):
    with pytest.raises(InvalidInputError):
        call()


def test_record_requires_completed_task():
    t = Task(7, "job", burst_time=10, arrival_time=3, nice=-2)
    with pytest.raises(SchedulerInvariantError):
        TaskRecord.from_task(t)
    t.run(10, now=3)
    record = TaskRecord.from_task(t)
    assert record.task_id == 7
    assert record.task_class == "Foreground"
    assert record.policy == "Time Sharing"
    assert record.turnaround_time == 10
    assert record.priority == 118
