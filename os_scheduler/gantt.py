from __future__ import annotations

from typing import Dict, List

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import ScheduledSlice

COLORS = ["red", "green", "yellow", "blue", "magenta", "cyan"]


def build_rich_gantt(slices: List[ScheduledSlice], unit: int = 10) -> tuple[Panel, str]:
    """
    Build a Rich Panel containing a colored Gantt chart and a string with time marks.

    Each character column stands for `unit` ms of virtual time.
    """
    if not slices:
        panel = Panel("No execution", title="Gantt Chart")
        return panel, ""

    slices = sorted(slices, key=lambda s: (s.start_time, s.end_time))
    task_to_color: Dict[int, str] = {}

    def task_color(task_id: int) -> str:
        if task_id not in task_to_color:
            task_to_color[task_id] = COLORS[len(task_to_color) % len(COLORS)]
        return task_to_color[task_id]

    timeline = Text()
    labels = Text()
    time_marks = Text("0")
    column = 0
    origin = slices[0].start_time

    for sl in slices:
        start_col = (sl.start_time - origin) // unit
        idle_gap = start_col - column
        if idle_gap > 0:
            timeline.append(" " * idle_gap)
            labels.append(" " * idle_gap)
            column = start_col

        width = max(1, -(-(sl.end_time - sl.start_time) // unit))
        timeline.append(" " * width, style=f"on {task_color(sl.task_id)}")
        labels.append(sl.name[:width].ljust(width), style="bold")
        column += width

        mark = str(sl.end_time)
        pad = column - len(time_marks) - len(mark) + 1
        if pad > 0:
            time_marks.append(" " * pad + mark)

    table = Table.grid(padding=(0, 0))
    table.add_row(timeline)
    table.add_row(labels)

    panel = Panel.fit(table, title=f"Gantt Chart (1 column = {unit}ms)")
    return panel, time_marks.plain
