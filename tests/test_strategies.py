from itertools import permutations

import pytest

from os_scheduler.clock import SimulationClock
from os_scheduler.models import (
    AndroidClass,
    InvalidInputError,
    LinuxClass,
    SchedulerInvariantError,
    SchedulingPolicy,
    Task,
)
from os_scheduler.strategies import PriorityQueueStrategy, StrictClassStrategy


def _linux(nice=0, burst=100, task_id=1, name=None, arrival=0, policy=SchedulingPolicy.TIME_SHARING):
    return Task(task_id, name or f"T{task_id}", burst_time=burst, arrival_time=arrival, nice=nice, policy=policy)


def _android(cls, burst=100, task_id=1, name=None, arrival=0):
    return Task(task_id, name or f"T{task_id}", burst_time=burst, arrival_time=arrival, task_class=cls)


def _completion_order(strategy):
    return [t.name for t in strategy.completed]


def _assert_time_conserved(strategy, now):
    for t in strategy.tasks:
        if t.is_completed:
            assert t.wait_time + t.run_time == t.completion_time - t.arrival_time
        else:
            assert t.wait_time + t.run_time == now - t.arrival_time


def test_equal_time_sharing_tasks_finish_in_creation_order():
    clock = SimulationClock(tick_ms=10)
    pq = PriorityQueueStrategy(clock)
    for i in range(1, 4):
        pq.add(_linux(task_id=i))

    clock.run_until_idle(pq)

    assert [t.task_id for t in pq.completed] == [1, 2, 3]
    assert [t.completion_time for t in pq.completed] == [100, 200, 300]
    for t in pq.completed:
        assert t.response_time == t.start_time - t.arrival_time
        assert t.wait_time == t.response_time
        assert t.preemption_count == 0


@pytest.mark.parametrize("order", list(permutations([("low", 10), ("mid", 0), ("high", -10)])))
def test_lower_priority_number_runs_first_for_any_insertion_order(order):
    clock = SimulationClock()
    pq = PriorityQueueStrategy(clock)
    for i, (name, nice) in enumerate(order, start=1):
        pq.add(_linux(nice=nice, task_id=i, name=name))

    clock.run_until_idle(pq)

    assert _completion_order(pq) == ["high", "mid", "low"]


def test_higher_priority_arrival_preempts_running_task():
    clock = SimulationClock()
    pq = PriorityQueueStrategy(clock)
    slow = _linux(nice=10, burst=200, task_id=1, name="slow")
    pq.add(slow)
    clock.advance(pq, 50)

    urgent = _linux(nice=-10, burst=50, task_id=2, name="urgent", arrival=clock.now)
    pq.add(urgent)
    clock.run_until_idle(pq)

    assert _completion_order(pq) == ["urgent", "slow"]
    assert slow.preemption_count == 1
    assert urgent.response_time == 0
    assert urgent.completion_time == 100
    assert slow.completion_time == 250


def test_slice_expiry_with_equal_priority_keeps_arrival_order():
    clock = SimulationClock()
    pq = PriorityQueueStrategy(clock)
    first, second = _linux(burst=150, task_id=1), _linux(burst=150, task_id=2)
    pq.add(first)
    pq.add(second)

    clock.run_until_idle(pq)

    assert first.preemption_count == 1
    assert second.preemption_count == 0
    assert [(s.task_id, s.start_time, s.end_time) for s in pq.timeline] == [(1, 0, 150), (2, 150, 300)]


def test_fifo_task_is_not_slice_preempted():
    clock = SimulationClock()
    pq = PriorityQueueStrategy(clock)
    long = _linux(burst=300, task_id=1, policy=SchedulingPolicy.FIFO)
    pq.add(long)
    pq.add(_linux(burst=10, task_id=2, policy=SchedulingPolicy.FIFO))

    clock.run_until_idle(pq)

    assert long.preemption_count == 0
    assert [s.task_id for s in pq.timeline] == [1, 2]


def test_time_is_conserved_at_every_tick():
    clock = SimulationClock()
    pq = PriorityQueueStrategy(clock)
    pq.add(_linux(nice=5, burst=150, task_id=1))
    pq.add(_linux(burst=15, task_id=2, policy=SchedulingPolicy.ROUND_ROBIN))
    next_id = 3
    while not pq.is_idle() or next_id < 6:
        if clock.now in (40, 90, 130) and next_id < 6:
            pq.add(_linux(nice=-5, burst=35, task_id=next_id, arrival=clock.now))
            next_id += 1
        clock.step(pq)
        _assert_time_conserved(pq, clock.now)

    for t in pq.completed:
        assert t.remaining_time == 0
        assert t.completion_time >= t.start_time >= t.arrival_time


def test_get_next_is_idempotent():
    clock = SimulationClock()
    pq = PriorityQueueStrategy(clock)
    pq.add(_linux(task_id=1))
    pq.add(_linux(task_id=2))

    first = pq.get_next()
    before = pq.snapshot()
    assert pq.get_next() is first
    assert pq.get_next() is first
    after = pq.snapshot()
    assert [t.task_id for t in before.queues["ready"]] == [t.task_id for t in after.queues["ready"]]
    assert first.wait_time == 0 and first.run_time == 0


def test_second_running_task_is_an_invariant_violation():
    pq = PriorityQueueStrategy(SimulationClock())
    first, second = _linux(task_id=1), _linux(task_id=2)
    pq.add(first)
    pq.add(second)
    assert pq.get_next() is first
    with pytest.raises(SchedulerInvariantError):
        pq._mark_running(second)


def test_completion_is_reported_once():
    seen = []
    clock = SimulationClock()
    pq = PriorityQueueStrategy(clock, on_complete=seen.append)
    task = _linux(burst=10, task_id=1)
    pq.add(task)
    clock.run_until_idle(pq)

    assert seen == [task]
    with pytest.raises(SchedulerInvariantError):
        pq.task_completed(task)


def test_strategies_reject_foreign_classes():
    clock = SimulationClock()
    with pytest.raises(InvalidInputError):
        PriorityQueueStrategy(clock).add(_android(AndroidClass.VISIBLE))
    with pytest.raises(InvalidInputError):
        StrictClassStrategy(clock).add(_linux())


def test_duplicate_task_id_rejected():
    pq = PriorityQueueStrategy(SimulationClock())
    pq.add(_linux(task_id=1))
    with pytest.raises(InvalidInputError):
        pq.add(_linux(task_id=1))


def test_foreground_arrival_runs_before_background_resumes():
    clock = SimulationClock()
    strict = StrictClassStrategy(clock)
    background = _android(AndroidClass.BACKGROUND, burst=500, task_id=1, name="bg")
    strict.add(background)
    clock.advance(strict, 50)

    foreground = _android(AndroidClass.FOREGROUND, burst=100, task_id=2, name="fg", arrival=clock.now)
    strict.add(foreground)
    clock.run_until_idle(strict)

    assert _completion_order(strict) == ["fg", "bg"]
    assert background.preemption_count >= 1
    resumed = [s for s in strict.timeline if s.task_id == 1][1]
    assert foreground.completion_time <= resumed.start_time
    assert [(s.name, s.start_time, s.end_time) for s in strict.timeline] == [
        ("bg", 0, 50),
        ("fg", 50, 150),
        ("bg", 150, 600),
    ]


def test_arrival_between_ticks_runs_on_the_next_tick():
    clock = SimulationClock()
    strict = StrictClassStrategy(clock)
    strict.add(_android(AndroidClass.BACKGROUND, burst=500, task_id=1, name="bg"))
    clock.advance(strict, 50)
    strict.add(_android(AndroidClass.FOREGROUND, burst=100, task_id=2, name="fg", arrival=clock.now))
    assert strict.tick(10).name == "fg"

    clock = SimulationClock()
    pq = PriorityQueueStrategy(clock)
    pq.add(_linux(nice=10, burst=500, task_id=1, name="slow"))
    clock.advance(pq, 50)
    pq.add(_linux(nice=-10, burst=100, task_id=2, name="urgent", arrival=clock.now))
    assert pq.tick(10).name == "urgent"
    assert pq.snapshot().queues["ready"][0].name == "slow"


def test_strict_classes_complete_in_rank_order():
    clock = SimulationClock()
    strict = StrictClassStrategy(clock)
    for i, cls in enumerate(reversed(list(AndroidClass)), start=1):
        strict.add(_android(cls, task_id=i, name=cls.label))

    clock.run_until_idle(strict)

    assert _completion_order(strict) == ["Foreground", "Visible", "Service", "Background", "Cached"]


def test_lower_class_never_runs_while_higher_class_ready():
    clock = SimulationClock()
    strict = StrictClassStrategy(clock)
    classes = [AndroidClass.CACHED, AndroidClass.SERVICE, AndroidClass.FOREGROUND, AndroidClass.SERVICE]
    for i, cls in enumerate(classes, start=1):
        strict.add(_android(cls, burst=120, task_id=i))
    late = {
        70: AndroidClass.VISIBLE,
        250: AndroidClass.FOREGROUND,
        400: AndroidClass.BACKGROUND,
        430: AndroidClass.FOREGROUND,
    }

    while not strict.is_idle() or late:
        if clock.now in late:
            cls = late.pop(clock.now)
            strict.add(_android(cls, burst=60, task_id=10 + clock.now, arrival=clock.now))
        snap = strict.snapshot()
        ran = strict.tick(clock.tick_ms)
        clock.now += clock.tick_ms
        if ran is None:
            continue
        higher_waiting = [
            t for name, queue in snap.queues.items() for t in queue if t.task_class < ran.task_class
        ]
        assert not higher_waiting


def test_round_robin_stays_inside_class():
    clock = SimulationClock()
    strict = StrictClassStrategy(clock)
    a = _android(AndroidClass.FOREGROUND, burst=150, task_id=1, name="a")
    b = _android(AndroidClass.FOREGROUND, burst=150, task_id=2, name="b")
    c = _android(AndroidClass.SERVICE, burst=50, task_id=3, name="c")
    for t in (a, b, c):
        strict.add(t)

    clock.advance(strict, 100)
    snap = strict.snapshot()
    assert snap.running is b
    assert [t.name for t in snap.queues["Foreground"]] == ["a"]
    assert [t.name for t in snap.queues["Service"]] == ["c"]

    clock.run_until_idle(strict)
    assert [(s.name, s.start_time, s.end_time) for s in strict.timeline] == [
        ("a", 0, 100),
        ("b", 100, 200),
        ("a", 200, 250),
        ("b", 250, 300),
        ("c", 300, 350),
    ]
    assert a.preemption_count == 1
    assert b.preemption_count == 1
    assert c.preemption_count == 0


def test_lone_task_keeps_running_after_slice_expiry():
    clock = SimulationClock()
    strict = StrictClassStrategy(clock)
    task = _android(AndroidClass.SERVICE, burst=250, task_id=1)
    strict.add(task)
    clock.run_until_idle(strict)
    assert task.preemption_count == 0
    assert task.completion_time == 250
