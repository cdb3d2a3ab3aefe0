from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from .models import InvalidInputError, TaskRecord, parse_policy, parse_strategy_kind


@dataclass
class WorkloadEntry:
    """
    One task of a workload file. Class and policy stay as tokens because a
    class token only has meaning once the target strategy is known.
    """

    name: str
    arrival_time: int
    burst_time: int
    nice: int = 0
    policy: str = "ts"
    task_class: str = "fg"
    strategy: Optional[str] = None


def load_workload(path: str | Path) -> List[WorkloadEntry]:
    """
    Load a workload from a JSON or CSV file into a list of WorkloadEntry objects.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".json":
        return _load_json(path)
    if suffix == ".csv":
        return _load_csv(path)

    raise InvalidInputError(f"Unsupported workload format: {suffix} (use .json or .csv)")


def _load_json(path: Path) -> List[WorkloadEntry]:
    with path.open("r", encoding="utf-8") as f:
        raw = json.load(f)

    if not isinstance(raw, list):
        raise InvalidInputError("JSON workload must be a list of task objects")

    return [_entry_from_mapping(entry) for entry in raw]


def _load_csv(path: Path) -> List[WorkloadEntry]:
    entries: List[WorkloadEntry] = []
    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        for row in reader:
            entries.append(_entry_from_mapping(row))
    return entries


def _optional(mapping, key: str, default):
    value = mapping.get(key)
    return default if value in (None, "") else value


def _entry_from_mapping(mapping) -> WorkloadEntry:
    if not isinstance(mapping, dict):
        raise InvalidInputError(f"Invalid task entry: {mapping!r}")
    try:
        name = str(mapping["name"])
        arrival_time = int(_optional(mapping, "arrival_time", 0))
        burst_time = int(mapping["burst_time"])
        nice = int(_optional(mapping, "nice", 0))
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidInputError(f"Invalid task entry: {mapping!r}") from exc

    policy = str(_optional(mapping, "policy", "ts"))
    parse_policy(policy)
    strategy = _optional(mapping, "strategy", None)
    if strategy is not None:
        parse_strategy_kind(strategy)

    return WorkloadEntry(
        name=name,
        arrival_time=arrival_time,
        burst_time=burst_time,
        nice=nice,
        policy=policy,
        task_class=str(_optional(mapping, "class", "fg")),
        strategy=strategy,
    )


def append_record(path: str | Path, record: TaskRecord) -> None:
    """
    Append one completed-task record as a JSON line. Raises OSError on failure.
    """
    path = Path(path)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(asdict(record), sort_keys=True) + "\n")


def load_records(path: str | Path) -> List[TaskRecord]:
    path = Path(path)
    records: List[TaskRecord] = []
    with path.open("r", encoding="utf-8") as f:
        for line in _non_empty(f):
            records.append(TaskRecord(**json.loads(line)))
    return records


def _non_empty(lines: Iterable[str]) -> Iterable[str]:
    for line in lines:
        line = line.strip()
        if line:
            yield line
