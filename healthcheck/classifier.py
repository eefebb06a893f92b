from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from healthcheck.definitions import AlertDefinition
from healthcheck.probes import ProbeSample, format_number

OK = "OK"
WARNING = "WARNING"
ERROR = "ERROR"
TELEMETRY = "TELEMETRY"

SEVERITIES = (ERROR, WARNING, OK, TELEMETRY)


@dataclass(frozen=True)
class Verdict:
    severity: str
    condition: str
    sample: ProbeSample
    ignored: bool = False

    @property
    def matched(self) -> bool:
        return self.severity in (WARNING, ERROR)


def classify(value: float, definition: AlertDefinition, sample: Optional[ProbeSample] = None) -> Verdict:
    """Classify one sample value against a definition's Ignore/Error/Warning criteria.

    Ignore wins over everything, and negative values are always ignored. A
    definition without Warning and Error yields TELEMETRY; callers route those
    through the telemetry aggregator instead of alerting on them.
    """

    if sample is None:
        sample = ProbeSample(timestamp=0.0, raw=format_number(value), value=value)
    raw = sample.raw if sample.raw is not None else format_number(value)

    ignore = definition.ignore
    if (ignore is not None and ignore.matches(value)) or value < 0:
        comment = ignore.comment if ignore is not None else ""
        condition = f"IGNORE: {raw} {comment}".rstrip()
        return Verdict(severity=OK, condition=condition, sample=sample, ignored=True)

    if definition.is_telemetry:
        return Verdict(severity=TELEMETRY, condition=raw, sample=sample)

    if definition.error is not None and definition.error.matches(value):
        return Verdict(severity=ERROR, condition=definition.error.describe(raw), sample=sample)
    if definition.warning is not None and definition.warning.matches(value):
        return Verdict(severity=WARNING, condition=definition.warning.describe(raw), sample=sample)
    return Verdict(severity=OK, condition=raw, sample=sample)
