from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class RunSummary:
    """Counters for one evaluation run."""

    processed_definitions: int = 0
    telemetry_definitions: int = 0
    blank_queries: int = 0
    failed_queries: int = 0
    emitted_messages: int = 0
    telemetry_records: int = 0
    skipped_definitions: int = 0
    excluded_series: int = 0
    cancelled: int = 0
    records_by_severity: Dict[str, int] = field(default_factory=dict)
    elapsed_seconds: Optional[float] = None

    def count_record(self, severity: str) -> None:
        self.emitted_messages += 1
        self.records_by_severity[severity] = self.records_by_severity.get(severity, 0) + 1
        if severity == "TELEMETRY":
            self.telemetry_records += 1

    def merge(self, other: "RunSummary") -> None:
        self.processed_definitions += other.processed_definitions
        self.telemetry_definitions += other.telemetry_definitions
        self.blank_queries += other.blank_queries
        self.failed_queries += other.failed_queries
        self.emitted_messages += other.emitted_messages
        self.telemetry_records += other.telemetry_records
        self.skipped_definitions += other.skipped_definitions
        self.excluded_series += other.excluded_series
        self.cancelled += other.cancelled
        for severity, count in other.records_by_severity.items():
            self.records_by_severity[severity] = self.records_by_severity.get(severity, 0) + count

    @property
    def alert_count(self) -> int:
        return self.records_by_severity.get("WARNING", 0) + self.records_by_severity.get("ERROR", 0)

    def render_lines(self) -> List[str]:
        lines = [
            f"Processed {self.processed_definitions} definitions ({self.telemetry_definitions} telemetry)",
            f"Generated {self.emitted_messages} messages",
        ]
        if self.failed_queries:
            lines.append(f"INTERNAL-ERROR: {self.failed_queries} failed queries")
        if self.blank_queries:
            lines.append(f"{self.blank_queries} blank queries (metric's value is not available)")
        if self.skipped_definitions:
            lines.append(f"INTERNAL-ERROR: {self.skipped_definitions} definitions skipped")
        if self.cancelled:
            lines.append(f"{self.cancelled} definitions cancelled")
        if self.elapsed_seconds is not None:
            lines.append(f"Total run time: {self.elapsed_seconds:.1f} seconds")
        return lines

    def to_dict(self) -> Dict[str, object]:
        return {
            "processed_definitions": self.processed_definitions,
            "telemetry_definitions": self.telemetry_definitions,
            "blank_queries": self.blank_queries,
            "failed_queries": self.failed_queries,
            "emitted_messages": self.emitted_messages,
            "telemetry_records": self.telemetry_records,
            "skipped_definitions": self.skipped_definitions,
            "excluded_series": self.excluded_series,
            "cancelled": self.cancelled,
            "records_by_severity": dict(sorted(self.records_by_severity.items())),
        }
