"""
Importance scoring for live processes.

Everything here is a pure function of an ImportanceSignals value and a
ScoringPolicy, so the whole pipeline can be exercised without touching the
operating system:

    raw_score -> blend_override -> normalize -> classify

Scores grow with importance; the normalized importance value is inverted so
that a lower number means a more important process, matching the "lower
number wins" convention of the schedulers.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Dict, Optional

from .models import AndroidClass, InvalidInputError

MIN_REQUESTED_PRIORITY = -20
MAX_REQUESTED_PRIORITY = 20

NEUTRAL_KILL_PRIORITY = 0

KILL_PRIORITY: Dict[AndroidClass, int] = {
    AndroidClass.FOREGROUND: 0,
    AndroidClass.VISIBLE: 100,
    AndroidClass.SERVICE: 300,
    AndroidClass.BACKGROUND: 600,
    AndroidClass.CACHED: 900,
}

GROUP_NAMES: Dict[AndroidClass, str] = {
    AndroidClass.FOREGROUND: "foreground",
    AndroidClass.VISIBLE: "visible",
    AndroidClass.SERVICE: "service",
    AndroidClass.BACKGROUND: "background",
    AndroidClass.CACHED: "cached",
}


@dataclass
class ScoringPolicy:
    """
    Tunable constants of the importance heuristic.

    Bonuses are added to the raw score; "window" values are the number of
    seconds over which a recency bonus decays linearly to zero.
    """

    focused_bonus: float = 150.0
    parent_of_focused_bonus: float = 100.0
    system_service_bonus: float = 40.0
    audio_bonus: float = 60.0
    gpu_bonus: float = 30.0
    gpu_window: float = 10.0
    network_bonus: float = 20.0
    network_window: float = 10.0
    disk_bonus: float = 15.0
    disk_window: float = 30.0
    activity_bonus: float = 25.0
    activity_window: float = 60.0
    foreground_bonus: float = 50.0
    foreground_window: float = 300.0
    cpu_weight: float = 0.2
    memory_penalty: float = 40.0
    memory_threshold_kb: int = 512 * 1024

    # Requested override in [-20, 20]: negative asks for more importance.
    override_weight: float = 2.0
    override_scale: float = 5.0

    score_ceiling: float = 200.0

    foreground_max: float = -30.0
    visible_max: float = 20.0
    service_max: float = 50.0
    background_max: float = 80.0

    def __post_init__(self) -> None:
        if self.score_ceiling <= 0:
            raise ValueError("score_ceiling must be strictly positive")
        if self.override_weight < 0:
            raise ValueError("override_weight cannot be negative")
        bands = [self.foreground_max, self.visible_max, self.service_max, self.background_max]
        if bands != sorted(bands) or len(set(bands)) != len(bands):
            raise ValueError("class thresholds must be strictly increasing")
        for name in ("gpu_window", "network_window", "disk_window", "activity_window", "foreground_window"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be strictly positive")


@dataclass
class ImportanceSignals:
    """
    Runtime signals for one process at one instant.

    `seconds_since_*` fields are None when the event was never observed.
    """

    is_focused: bool = False
    is_parent_of_focused: bool = False
    is_system_service: bool = False
    is_producing_audio: bool = False
    seconds_since_gpu: Optional[float] = None
    seconds_since_network: Optional[float] = None
    seconds_since_disk: Optional[float] = None
    seconds_since_active: Optional[float] = None
    seconds_since_foreground: Optional[float] = None
    avg_cpu_percent: float = 0.0
    avg_memory_kb: float = 0.0
    memory_pressure: bool = False
    requested_priority: int = 0


def _decayed(bonus: float, elapsed: Optional[float], window: float) -> float:
    if elapsed is None or elapsed >= window:
        return 0.0
    return bonus * (1.0 - max(elapsed, 0.0) / window)


def raw_score(signals: ImportanceSignals, policy: ScoringPolicy) -> float:
    score = 0.0
    if signals.is_focused:
        score += policy.focused_bonus
    elif signals.is_parent_of_focused:
        score += policy.parent_of_focused_bonus
    if signals.is_system_service:
        score += policy.system_service_bonus
    if signals.is_producing_audio:
        score += policy.audio_bonus

    score += _decayed(policy.gpu_bonus, signals.seconds_since_gpu, policy.gpu_window)
    score += _decayed(policy.network_bonus, signals.seconds_since_network, policy.network_window)
    score += _decayed(policy.disk_bonus, signals.seconds_since_disk, policy.disk_window)
    score += _decayed(policy.activity_bonus, signals.seconds_since_active, policy.activity_window)
    score += _decayed(policy.foreground_bonus, signals.seconds_since_foreground, policy.foreground_window)
    score += policy.cpu_weight * max(signals.avg_cpu_percent, 0.0)

    if signals.memory_pressure and signals.avg_memory_kb > policy.memory_threshold_kb:
        score -= policy.memory_penalty
    return score


def check_requested_priority(value: int) -> int:
    if not MIN_REQUESTED_PRIORITY <= value <= MAX_REQUESTED_PRIORITY:
        raise InvalidInputError(
            f"requested priority must be in [{MIN_REQUESTED_PRIORITY}, {MAX_REQUESTED_PRIORITY}] (got {value})"
        )
    return value


def blend_override(score: float, requested_priority: int, policy: ScoringPolicy) -> float:
    """
    Weighted average of the computed score and a user override. Zero means
    no override.
    """
    if requested_priority == 0:
        return score
    override_score = -requested_priority * policy.override_scale
    weight = policy.override_weight
    return (weight * override_score + score) / (weight + 1.0)


def normalize(score: float, policy: ScoringPolicy) -> float:
    clamped = max(0.0, min(policy.score_ceiling, score))
    return policy.score_ceiling / 2.0 - clamped


def importance_value(signals: ImportanceSignals, policy: ScoringPolicy) -> float:
    blended = blend_override(raw_score(signals, policy), signals.requested_priority, policy)
    return normalize(blended, policy)


def classify(importance: float, policy: ScoringPolicy) -> AndroidClass:
    if importance <= policy.foreground_max:
        return AndroidClass.FOREGROUND
    if importance <= policy.visible_max:
        return AndroidClass.VISIBLE
    if importance <= policy.service_max:
        return AndroidClass.SERVICE
    if importance <= policy.background_max:
        return AndroidClass.BACKGROUND
    return AndroidClass.CACHED


def kill_priority_for(cls: AndroidClass) -> int:
    return KILL_PRIORITY[cls]


def resource_group_for(cls: AndroidClass, root: str) -> str:
    return posixpath.join(root, GROUP_NAMES[cls])
