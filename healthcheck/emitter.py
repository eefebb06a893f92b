"""Structured records and human-readable report lines.

Each definition gets its own :class:`MessageEmitter`. Records are buffered per
series and rendered when the series is closed, so the ``[N probes]`` suffix
carries the final occurrence count for that severity.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple, Union

from healthcheck.classifier import OK, TELEMETRY, Verdict
from healthcheck.debounce import TriggerDecision
from healthcheck.definitions import AlertDefinition
from healthcheck.probes import format_timestamp
from healthcheck.telemetry import WindowSummary


@dataclass(frozen=True)
class SeriesKey:
    alert_id: str
    label_value: Optional[str] = None


@dataclass(frozen=True)
class AlertRecord:
    alert_id: str
    description: str
    severity: str
    condition: str
    timestamp: float
    value: Optional[str]
    probe_interval: int
    consecutive_count: Optional[int] = None
    label_key: Optional[str] = None
    label_value: Optional[str] = None
    priority: Optional[str] = None
    ticket: Optional[str] = None
    frequency: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "AlertID": self.alert_id,
            "Description": self.description,
            "SeverityLevel": self.severity,
            "AlertCondition": self.condition,
            "Value": [self.timestamp, self.value],
        }
        if self.consecutive_count is not None:
            payload["ConsecutiveCount"] = self.consecutive_count
        if self.label_key is not None:
            payload["LabelKey"] = self.label_key
            payload["LabelValue"] = self.label_value
        payload["ProbeInterval"] = self.probe_interval
        if self.priority is not None:
            payload["PriorityLevel"] = self.priority
        if self.ticket is not None:
            payload["SupportTicket"] = self.ticket
        if self.frequency is not None:
            payload["Frequency"] = self.frequency
        return payload


@dataclass(frozen=True)
class TelemetryRecord:
    alert_id: str
    description: str
    summary: WindowSummary
    label_key: Optional[str] = None
    label_value: Optional[str] = None

    @property
    def severity(self) -> str:
        return TELEMETRY

    def to_dict(self) -> Dict[str, object]:
        summary = self.summary
        payload: Dict[str, object] = {
            "AlertID": self.alert_id,
            "Description": self.description,
            "ValueMinMaxAvg": [
                summary.window_start,
                summary.window_end,
                summary.average_text,
                summary.maximum_raw,
                summary.minimum_raw,
            ],
        }
        if self.label_key is not None:
            payload["LabelKey"] = self.label_key
            payload["LabelValue"] = self.label_value
        return payload


Record = Union[AlertRecord, TelemetryRecord]


@dataclass(frozen=True)
class EmittedLine:
    record: Record
    line: str


def render_line(record: Record, count: int, window_probes: int, show_time: bool = True) -> str:
    """``LEVEL : id : description : condition [: [key=value]=raw][ [time]] [N probes]``."""

    time_info = ""
    if isinstance(record, TelemetryRecord):
        summary = record.summary
        message = f"Avg: {summary.average_text}, Max: {summary.maximum_raw}, Min: {summary.minimum_raw}"
        raw = ""
        if show_time:
            time_info = f" [{format_timestamp(summary.window_start)} - {format_timestamp(summary.window_end)}]"
    else:
        message = record.condition
        raw = record.value or ""
        if record.consecutive_count is not None:
            message += f" - Consecutive {record.consecutive_count} probes, {record.probe_interval} seconds each"
        elif show_time:
            time_info = f" [{format_timestamp(record.timestamp)}]"

    line = f"{record.severity} : {record.alert_id} : {record.description} : {message}"
    if record.label_key is not None:
        line += f" : [{record.label_key}={record.label_value}]={raw}"
    line += time_info
    prefix = "all " if count == window_probes else ""
    return f"{line} [{prefix}{count} probes]"


@dataclass
class MessageEmitter:
    definition: AlertDefinition
    probe_interval: int
    window_probes: int
    verbose: bool = False
    show_time: bool = True
    single_query: bool = False
    seen: Set[Tuple[SeriesKey, str]] = field(default_factory=set)
    counts: Dict[Tuple[SeriesKey, str], int] = field(default_factory=dict)
    _pending: Dict[SeriesKey, List[Record]] = field(default_factory=dict)

    def count(self, key: SeriesKey, severity: str) -> int:
        return self.counts.get((key, severity), 0)

    def observe(self, key: SeriesKey, verdict: Verdict) -> Optional[AlertRecord]:
        """Count a classified sample; return a record on the first occurrence of its severity.

        Used for undebounced definitions. OK samples only produce a record when
        running verbose.
        """

        self.counts[(key, verdict.severity)] = self.count(key, verdict.severity) + 1
        if not verdict.matched and not (self.verbose and verdict.severity == OK):
            return None
        if (key, verdict.severity) in self.seen:
            return None
        self.seen.add((key, verdict.severity))
        record = self._alert_record(key, verdict)
        self._pending.setdefault(key, []).append(record)
        return record

    def count_only(self, key: SeriesKey, verdict: Verdict) -> None:
        self.counts[(key, verdict.severity)] = self.count(key, verdict.severity) + 1

    def trigger(self, key: SeriesKey, decision: TriggerDecision) -> AlertRecord:
        """Record the final trigger of a debounced series."""

        self.seen.add((key, decision.severity))
        record = self._alert_record(key, decision.verdict, consecutive_count=decision.count)
        self._pending.setdefault(key, []).append(record)
        return record

    def telemetry(self, key: SeriesKey, summary: WindowSummary) -> TelemetryRecord:
        self.counts[(key, TELEMETRY)] = summary.valid_samples
        record = TelemetryRecord(
            alert_id=self.definition.alert_id,
            description=self.definition.description,
            summary=summary,
            label_key=self.definition.label,
            label_value=key.label_value if self.definition.label else None,
        )
        self._pending.setdefault(key, []).append(record)
        return record

    def close(self, key: SeriesKey) -> List[EmittedLine]:
        """Render every buffered record of ``key`` with its final count."""

        emitted = []
        for record in self._pending.pop(key, []):
            count = self.count(key, record.severity)
            if isinstance(record, AlertRecord) and record.consecutive_count is not None:
                count = record.consecutive_count
            emitted.append(EmittedLine(record, render_line(record, count, self.window_probes, self.show_time)))
        return emitted

    def _alert_record(self, key: SeriesKey, verdict: Verdict, consecutive_count: Optional[int] = None) -> AlertRecord:
        definition = self.definition
        return AlertRecord(
            alert_id=definition.alert_id,
            description=definition.description,
            severity=verdict.severity,
            condition=verdict.condition,
            timestamp=verdict.sample.timestamp,
            value=verdict.sample.raw,
            probe_interval=self.probe_interval,
            consecutive_count=consecutive_count,
            label_key=definition.label,
            label_value=key.label_value if definition.label else None,
            priority=definition.priority,
            ticket=definition.ticket,
            frequency=definition.frequency,
        )
