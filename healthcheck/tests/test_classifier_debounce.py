from __future__ import annotations

from typing import List

from healthcheck.classifier import ERROR, OK, TELEMETRY, WARNING, Verdict, classify
from healthcheck.debounce import ConsecutiveDebouncer, TriggerDecision
from healthcheck.definitions import parse_definition
from healthcheck.probes import ProbeSample


def _definition(**fields: str):
    entry = {"AlertID": "A1", "Description": "test", "Query": "q"}
    entry.update(fields)
    return parse_definition(entry, 1)


def _verdict(severity: str, timestamp: float = 0.0) -> Verdict:
    return Verdict(severity=severity, condition=severity.lower(), sample=ProbeSample(timestamp, "1", 1.0))


def _run(debouncer: ConsecutiveDebouncer, severities: List[str], required: int) -> List[TriggerDecision]:
    decisions = []
    for index, severity in enumerate(severities):
        decision = debouncer.observe(_verdict(severity, float(index)), required)
        if decision is not None:
            decisions.append(decision)
    final = debouncer.finish(required)
    if final is not None:
        decisions.append(final)
    return decisions


def test_error_is_checked_before_warning() -> None:
    definition = _definition(Warning="> 10", Error="> 100")

    assert classify(150, definition).severity == ERROR
    assert classify(150, definition).condition == "150 > 100"
    assert classify(50, definition).severity == WARNING
    assert classify(50, definition).condition == "50 > 10"
    assert classify(5, definition).severity == OK


def test_ignore_takes_precedence_over_error() -> None:
    definition = _definition(Error="> 10", Ignore="== 42 known issue")

    verdict = classify(42, definition)

    assert verdict.severity == OK
    assert verdict.ignored
    assert verdict.condition == "IGNORE: 42 known issue"
    assert not verdict.matched


def test_negative_values_are_ignored() -> None:
    verdict = classify(-5, _definition(Error="< 10"))
    assert verdict.severity == OK
    assert verdict.ignored
    assert verdict.condition == "IGNORE: -5"


def test_definition_without_conditions_is_telemetry() -> None:
    sample = ProbeSample(1700000000, "12.5", 12.5)
    verdict = classify(12.5, _definition(), sample)
    assert verdict.severity == TELEMETRY
    assert verdict.condition == "12.5"
    assert verdict.sample is sample


def test_condition_text_uses_raw_backend_value() -> None:
    sample = ProbeSample(1700000000, "1600.000", 1600.0)
    verdict = classify(1600.0, _definition(Error="> 1500"), sample)
    assert verdict.condition == "1600.000 > 1500"


def test_equality_is_exact_float_comparison() -> None:
    definition = _definition(Error="== 0.3")
    assert classify(0.1 + 0.2, definition).severity == OK
    assert classify(0.3, definition).severity == ERROR


def test_run_reaching_required_count_fires_at_window_end() -> None:
    decisions = _run(ConsecutiveDebouncer(), [ERROR, ERROR, ERROR], 3)

    assert len(decisions) == 1
    assert decisions[0].count == 3
    assert decisions[0].severity == ERROR
    assert decisions[0].verdict.sample.timestamp == 2.0


def test_run_one_short_of_required_count_is_silent() -> None:
    assert _run(ConsecutiveDebouncer(), [ERROR, ERROR, OK], 3) == []


def test_ok_sample_resets_the_run() -> None:
    decisions = _run(ConsecutiveDebouncer(), [WARNING, WARNING, OK, ERROR, ERROR, ERROR, OK], 3)

    assert len(decisions) == 1
    assert decisions[0].count == 3
    assert decisions[0].verdict.sample.timestamp == 5.0


def test_most_recent_matching_severity_wins() -> None:
    decisions = _run(ConsecutiveDebouncer(), [ERROR, WARNING, WARNING], 3)
    assert [decision.severity for decision in decisions] == [WARNING]


def test_series_is_satisfied_after_firing() -> None:
    debouncer = ConsecutiveDebouncer()
    decisions = _run(debouncer, [ERROR, ERROR, OK, ERROR, ERROR, ERROR], 2)

    assert len(decisions) == 1
    assert decisions[0].count == 2
    assert debouncer.satisfied
    assert debouncer.observe(_verdict(ERROR), 2) is None



def test_infinite_values_are_compared_not_dropped() -> None:
    definition = _definition(Error="> 1500")
    assert ProbeSample.from_pair([1700000000, "+Inf"]).value == float("inf")
    assert classify(float("inf"), definition).severity == ERROR
    assert classify(float("-inf"), definition).ignored
