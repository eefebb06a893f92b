from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from healthcheck.probes import ProbeSample, format_number


@dataclass(frozen=True)
class WindowSummary:
    """Aggregated statistics for one series over a probe window."""

    minimum: float
    maximum: float
    average: float
    minimum_raw: str
    maximum_raw: str
    window_start: float
    window_end: float
    valid_samples: int
    window_size: int

    @property
    def average_text(self) -> str:
        return format_number(self.average)

    @classmethod
    def from_samples(cls, samples: Sequence[ProbeSample]) -> Optional["WindowSummary"]:
        """Summarize a window, or return ``None`` when no sample carries a value.

        The average divides by the full window size, blank samples included.
        """

        valid = [sample for sample in samples if sample.value is not None]
        if not valid:
            return None

        lowest = highest = valid[0]
        total = 0.0
        for sample in valid:
            assert sample.value is not None
            if sample.value > highest.value:  # type: ignore[operator]
                highest = sample
            if sample.value < lowest.value:  # type: ignore[operator]
                lowest = sample
            total += sample.value

        timestamps = [sample.timestamp for sample in samples]
        return cls(
            minimum=lowest.value,  # type: ignore[arg-type]
            maximum=highest.value,  # type: ignore[arg-type]
            average=total / float(len(samples)),
            minimum_raw=lowest.raw or format_number(lowest.value),  # type: ignore[arg-type]
            maximum_raw=highest.raw or format_number(highest.value),  # type: ignore[arg-type]
            window_start=min(timestamps),
            window_end=max(timestamps),
            valid_samples=len(valid),
            window_size=len(samples),
        )


def aggregate(samples: Sequence[ProbeSample]) -> Optional[WindowSummary]:
    return WindowSummary.from_samples(samples)
