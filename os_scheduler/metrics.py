from __future__ import annotations

from typing import List

from .models import ScheduledSlice, SystemMetrics, TaskRecord


def compute_system_metrics(records: List[TaskRecord], timeline: List[ScheduledSlice]) -> SystemMetrics:
    """
    Compute throughput and CPU utilization given completed-task records
    and timeline slices.
    """
    if not records:
        return SystemMetrics(cpu_busy_time=0, makespan=0, throughput=0.0, cpu_utilization=0.0)

    start = min(r.arrival_time for r in records)
    makespan = max(r.completion_time for r in records) - start
    cpu_busy_time = sum(slice_.end_time - slice_.start_time for slice_ in timeline)

    throughput = len(records) / makespan if makespan > 0 else 0.0
    cpu_utilization = min(cpu_busy_time / makespan, 1.0) if makespan > 0 else 0.0

    # Count tasks whose waiting time is more than 2x the average waiting time.
    avg_wait = sum(r.wait_time for r in records) / len(records)
    starvation_count = sum(1 for r in records if r.wait_time > 2 * avg_wait)

    return SystemMetrics(
        cpu_busy_time=cpu_busy_time,
        makespan=makespan,
        throughput=throughput,
        cpu_utilization=cpu_utilization,
        starvation_count=starvation_count,
    )


def summarize_records(records: List[TaskRecord]) -> dict:
    """
    Return averages of the key per-task metrics for quick comparison.
    """
    if not records:
        return {"avg_waiting": 0.0, "avg_turnaround": 0.0, "avg_response": 0.0, "preemptions": 0}

    n = len(records)
    return {
        "avg_waiting": sum(r.wait_time for r in records) / n,
        "avg_turnaround": sum(r.turnaround_time for r in records) / n,
        "avg_response": sum(r.response_time for r in records) / n,
        "preemptions": sum(r.preemption_count for r in records),
    }
