"""Threshold alert evaluation over Prometheus probe windows."""

from .classifier import ERROR, OK, TELEMETRY, WARNING, Verdict, classify
from .debounce import ConsecutiveDebouncer, ConsecutiveState, TriggerDecision
from .definitions import (
    AlertDefinition,
    Condition,
    ConditionError,
    DefinitionError,
    DefinitionSet,
    RejectedDefinition,
    build_definition_set,
    derive_telemetry_definitions,
    load_definitions,
)
from .emitter import AlertRecord, MessageEmitter, SeriesKey, TelemetryRecord
from .engine import Evaluator
from .fanout import fanout
from .probes import ProbeSample, QueryError, QueryResponse, RangeResult, SingleResult, decode_response
from .sources import CollectedTelemetrySource, ExpositionSource, PrometheusSource, QueryWindow
from .summary import RunSummary
from .telemetry import WindowSummary, aggregate

__all__ = [
    "ERROR",
    "OK",
    "TELEMETRY",
    "WARNING",
    "AlertDefinition",
    "AlertRecord",
    "CollectedTelemetrySource",
    "Condition",
    "ConditionError",
    "ConsecutiveDebouncer",
    "ConsecutiveState",
    "DefinitionError",
    "DefinitionSet",
    "Evaluator",
    "ExpositionSource",
    "MessageEmitter",
    "ProbeSample",
    "PrometheusSource",
    "QueryError",
    "QueryResponse",
    "QueryWindow",
    "RangeResult",
    "RejectedDefinition",
    "RunSummary",
    "SeriesKey",
    "SingleResult",
    "TelemetryRecord",
    "TriggerDecision",
    "Verdict",
    "WindowSummary",
    "aggregate",
    "build_definition_set",
    "classify",
    "decode_response",
    "derive_telemetry_definitions",
    "fanout",
    "load_definitions",
]
