"""Consecutive-probe debouncing for a single series.

A series only alerts once its condition has held for ``required_count``
back-to-back probes. The decision is taken when the run ends, either on the
first OK sample after it or when the probe window is exhausted, so the emitted
trigger carries the full length of the run.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from healthcheck.classifier import Verdict


@dataclass
class ConsecutiveState:
    count: int = 0
    last_matching: Optional[Verdict] = None
    fired: bool = False


@dataclass(frozen=True)
class TriggerDecision:
    verdict: Verdict
    count: int

    @property
    def severity(self) -> str:
        return self.verdict.severity


class ConsecutiveDebouncer:
    def __init__(self, state: Optional[ConsecutiveState] = None) -> None:
        self.state = state if state is not None else ConsecutiveState()

    @property
    def satisfied(self) -> bool:
        """True once the final trigger was emitted; later samples are not evaluated."""

        return self.state.fired

    def observe(self, verdict: Verdict, required_count: int) -> Optional[TriggerDecision]:
        state = self.state
        if state.fired:
            return None

        if verdict.matched:
            # Single counter per series: the latest matching severity wins.
            state.count += 1
            state.last_matching = verdict
            return None

        if state.count >= required_count:
            return self._fire()
        state.count = 0
        return None

    def finish(self, required_count: int) -> Optional[TriggerDecision]:
        """Close the probe window; it behaves like a trailing OK sample."""

        state = self.state
        if state.fired:
            return None
        if state.count >= required_count:
            return self._fire()
        return None

    def _fire(self) -> TriggerDecision:
        state = self.state
        assert state.last_matching is not None
        decision = TriggerDecision(verdict=state.last_matching, count=state.count)
        state.count = 0
        state.fired = True
        return decision
