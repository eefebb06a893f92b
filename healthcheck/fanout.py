from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from healthcheck.classifier import classify
from healthcheck.debounce import ConsecutiveDebouncer, ConsecutiveState
from healthcheck.definitions import AlertDefinition
from healthcheck.emitter import EmittedLine, MessageEmitter, SeriesKey
from healthcheck.probes import ProbeResult, ProbeSample
from healthcheck.telemetry import WindowSummary

logger = logging.getLogger(__name__)


@dataclass
class SeriesGroup:
    key: SeriesKey
    samples: List[ProbeSample] = field(default_factory=list)


@dataclass
class SeriesResult:
    key: SeriesKey
    lines: List[EmittedLine]
    blank_samples: int = 0


@dataclass
class FanoutResult:
    series: List[SeriesResult]
    excluded: int = 0

    @property
    def lines(self) -> List[EmittedLine]:
        return [line for series in self.series for line in series.lines]

    @property
    def blank_samples(self) -> int:
        return sum(series.blank_samples for series in self.series)


def group_series(results: Sequence[ProbeResult], definition: AlertDefinition) -> Tuple[List[SeriesGroup], int]:
    """Split query results into series by ``definition.label``.

    Groups keep first-seen order and samples keep input order. Returns the
    surviving groups and the number of excluded label values.
    """

    if not definition.label:
        whole = SeriesGroup(SeriesKey(definition.alert_id))
        for result in results:
            whole.samples.extend(result.samples)
        return [whole], 0

    groups: Dict[str, SeriesGroup] = {}
    excluded = set()
    for result in results:
        label_value = result.metric.get(definition.label, "")
        if definition.exclude is not None and label_value == definition.exclude:
            if label_value not in excluded:
                logger.debug("%s: excluding %s=%s", definition.alert_id, definition.label, label_value)
            excluded.add(label_value)
            continue
        group = groups.get(label_value)
        if group is None:
            group = groups[label_value] = SeriesGroup(SeriesKey(definition.alert_id, label_value))
        group.samples.extend(result.samples)
    return list(groups.values()), len(excluded)


def _evaluate_telemetry(group: SeriesGroup, emitter: MessageEmitter) -> int:
    summary = WindowSummary.from_samples(group.samples)
    if summary is not None:
        emitter.telemetry(group.key, summary)
    return summary.window_size - summary.valid_samples if summary else len(group.samples)


def _evaluate_alert(
    group: SeriesGroup, definition: AlertDefinition, emitter: MessageEmitter, state: ConsecutiveState
) -> int:
    blanks = 0
    debouncer = ConsecutiveDebouncer(state)
    required = definition.consecutive_probes
    # A single-query window holds one probe, so it reports on first occurrence.
    debounced = definition.debounced and not emitter.single_query
    for sample in group.samples:
        if sample.value is None:
            blanks += 1
            continue
        verdict = classify(sample.value, definition, sample)
        if not debounced:
            emitter.observe(group.key, verdict)
            continue
        emitter.count_only(group.key, verdict)
        decision = debouncer.observe(verdict, required)
        if decision is not None:
            emitter.trigger(group.key, decision)
        if debouncer.satisfied:
            break
    if debounced:
        decision = debouncer.finish(required)
        if decision is not None:
            emitter.trigger(group.key, decision)
    return blanks


def fanout(results: Sequence[ProbeResult], definition: AlertDefinition, emitter: MessageEmitter) -> FanoutResult:
    groups, excluded = group_series(results, definition)
    states: Dict[SeriesKey, ConsecutiveState] = {}
    evaluated: List[SeriesResult] = []
    for group in groups:
        if definition.is_telemetry:
            blanks = _evaluate_telemetry(group, emitter)
        else:
            state = states.setdefault(group.key, ConsecutiveState())
            blanks = _evaluate_alert(group, definition, emitter, state)
        evaluated.append(SeriesResult(key=group.key, lines=emitter.close(group.key), blank_samples=blanks))
    return FanoutResult(series=evaluated, excluded=excluded)
