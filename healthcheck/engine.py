"""Run loop: fetch, fan out, classify and report every definition.

Definitions are independent, so they can be evaluated on a thread pool. Their
outcomes are written strictly in definition order, which keeps a parallel run
byte-for-byte identical to a sequential one.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Protocol, Sequence, Union

from healthcheck.definitions import AlertDefinition, DefinitionEntry, DefinitionSet, RejectedDefinition
from healthcheck.emitter import EmittedLine, MessageEmitter
from healthcheck.fanout import fanout
from healthcheck.probes import QueryError
from healthcheck.sources import ProbeResultSource, QueryWindow
from healthcheck.summary import RunSummary

logger = logging.getLogger(__name__)

ReportItem = Union[str, EmittedLine]


class ReportSink(Protocol):
    def line(self, text: str) -> None:
        ...

    def emit(self, emitted: EmittedLine) -> None:
        ...


@dataclass
class DefinitionOutcome:
    alert_id: str
    items: List[ReportItem] = field(default_factory=list)
    summary: RunSummary = field(default_factory=RunSummary)

    @property
    def records(self) -> List[EmittedLine]:
        return [item for item in self.items if isinstance(item, EmittedLine)]


class Evaluator:
    def __init__(
        self,
        source: ProbeResultSource,
        window: QueryWindow,
        verbose: bool = False,
        workers: int = 1,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.source = source
        self.window = window
        self.verbose = verbose
        self.workers = workers
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def evaluate_entry(self, entry: DefinitionEntry) -> DefinitionOutcome:
        if isinstance(entry, RejectedDefinition):
            outcome = DefinitionOutcome(entry.alert_id)
            outcome.summary.skipped_definitions = 1
            outcome.items.append(
                f"INTERNAL-ERROR: SKIPPED DEFINITION: {entry.alert_id} : {entry.description} : {entry.reason}"
            )
            return outcome
        return self.evaluate_definition(entry)

    def evaluate_definition(self, definition: AlertDefinition) -> DefinitionOutcome:
        outcome = DefinitionOutcome(definition.alert_id)
        summary = outcome.summary
        if self.cancelled:
            summary.cancelled = 1
            return outcome

        window = self.window.for_definition(definition)
        summary.processed_definitions = 1
        if definition.is_telemetry:
            summary.telemetry_definitions = 1

        try:
            response = self.source.fetch(definition, window)
        except QueryError as exc:
            return self._failed(outcome, definition, str(exc))
        if not response.ok:
            return self._failed(outcome, definition, response.error or f"status {response.status}")
        if not response.results:
            logger.debug("BLANK QUERY: %s, Query=%s", definition.alert_id, definition.query)
            summary.blank_queries += 1
            return outcome

        emitter = MessageEmitter(
            definition,
            probe_interval=window.step_seconds,
            window_probes=window.probes,
            verbose=self.verbose,
            show_time=not window.instant,
            single_query=window.instant,
        )
        result = fanout(response.results, definition, emitter)
        if result.blank_samples:
            logger.debug("%s: %d blank samples", definition.alert_id, result.blank_samples)
        summary.blank_queries += result.blank_samples
        summary.excluded_series += result.excluded
        for emitted in result.lines:
            summary.count_record(emitted.record.severity)
            outcome.items.append(emitted)
        return outcome

    def _failed(self, outcome: DefinitionOutcome, definition: AlertDefinition, reason: str) -> DefinitionOutcome:
        logger.debug("FAILED QUERY: %s, Query=%s, REPLY: %s", definition.alert_id, definition.query, reason)
        outcome.summary.failed_queries += 1
        outcome.items.append(
            f"INTERNAL-ERROR: FAILED QUERY: {definition.alert_id} : {definition.description} : {reason}"
        )
        return outcome

    def evaluate(self, entries: Sequence[DefinitionEntry]) -> Iterator[DefinitionOutcome]:
        """Yield one outcome per entry, in input order."""

        total = len(entries)
        if self.workers == 1:
            for index, entry in enumerate(entries, start=1):
                logger.info("Processing %s (%d/%d)", entry.alert_id, index, total)
                yield self.evaluate_entry(entry)
            return
        logger.info("Processing %d definitions with %d workers", total, self.workers)
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            yield from pool.map(self.evaluate_entry, entries)

    def run(self, definition_set: DefinitionSet, sink: ReportSink) -> RunSummary:
        started = time.monotonic()
        summary = RunSummary()
        for outcome in self.evaluate(definition_set.entries):
            for item in outcome.items:
                if isinstance(item, EmittedLine):
                    sink.emit(item)
                else:
                    sink.line(item)
            summary.merge(outcome.summary)
        summary.elapsed_seconds = time.monotonic() - started
        logger.debug("Run summary: %s", summary.to_dict())
        if summary.cancelled:
            logger.warning("Run cancelled; %d definitions were not evaluated", summary.cancelled)
        return summary


def write_summary(summary: RunSummary, sink: ReportSink) -> None:
    for text in summary.render_lines():
        sink.line(text)
