from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .strategies import SchedulingStrategy


class SimulationClock:
    """
    Discrete virtual-time driver. One clock per strategy instance, so two
    strategies never share a timeline.
    """

    def __init__(self, tick_ms: int = 10, start: int = 0) -> None:
        if tick_ms <= 0:
            raise ValueError("tick_ms must be strictly positive")
        self.tick_ms = tick_ms
        self.now = start

    def step(self, strategy: "SchedulingStrategy", quantum: Optional[int] = None) -> int:
        quantum = self.tick_ms if quantum is None else quantum
        if quantum <= 0:
            raise ValueError("quantum must be strictly positive")
        strategy.tick(quantum)
        self.now += quantum
        return self.now

    def advance(self, strategy: "SchedulingStrategy", duration_ms: int) -> int:
        """
        Advance by `duration_ms`, split into ticks of at most tick_ms.
        """
        if duration_ms < 0:
            raise ValueError("duration cannot be negative")
        remaining = duration_ms
        while remaining > 0:
            quantum = min(self.tick_ms, remaining)
            self.step(strategy, quantum)
            remaining -= quantum
        return self.now

    def run_until_idle(self, strategy: "SchedulingStrategy", max_ms: Optional[int] = None) -> int:
        start = self.now
        while not strategy.is_idle():
            if max_ms is not None and self.now - start >= max_ms:
                break
            self.step(strategy)
        return self.now
