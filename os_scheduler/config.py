from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from .importance import ScoringPolicy
from .models import DEFAULT_TIME_SLICE_MS


@dataclass
class SimulatorConfig:
    tick_ms: int = 10
    time_slice_ms: int = DEFAULT_TIME_SLICE_MS
    records_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.tick_ms <= 0:
            raise ValueError("tick_ms must be strictly positive")
        if self.time_slice_ms <= 0:
            raise ValueError("time_slice_ms must be strictly positive")


@dataclass
class MonitorConfig:
    interval: float = 2.0
    history_size: int = 10
    idle_eviction_seconds: float = 300.0
    low_memory_percent: float = 15.0
    activity_cpu_percent: float = 1.0
    max_processes: int = 128
    cgroup_root: str = "/sys/fs/cgroup"
    dry_run: bool = True
    request_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError("interval must be strictly positive")
        if self.history_size <= 0:
            raise ValueError("history_size must be strictly positive")
        if self.max_processes <= 0:
            raise ValueError("max_processes must be strictly positive")
        if self.idle_eviction_seconds < 0:
            raise ValueError("idle_eviction_seconds cannot be negative")
        if not 0 <= self.low_memory_percent <= 100:
            raise ValueError("low_memory_percent must be within [0, 100]")


@dataclass
class AppConfig:
    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    scoring: ScoringPolicy = field(default_factory=ScoringPolicy)


_SECTIONS = {
    "simulator": SimulatorConfig,
    "monitor": MonitorConfig,
    "scoring": ScoringPolicy,
}


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    """
    Load configuration from a JSON file with optional sections
    "simulator", "monitor" and "scoring". Missing keys keep their defaults.
    """
    if path is None:
        return AppConfig()

    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        raw = json.load(f)

    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a JSON object")

    unknown = set(raw) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

    sections = {}
    for name, cls in _SECTIONS.items():
        values = raw.get(name) or {}
        allowed = {f.name for f in fields(cls)}
        bad = set(values) - allowed
        if bad:
            raise ValueError(f"Unknown keys in '{name}': {', '.join(sorted(bad))}")
        sections[name] = cls(**values)

    return AppConfig(**sections)
