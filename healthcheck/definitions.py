"""Alert and telemetry definitions.

Definitions are read once per run from a JSON (or YAML) array. Each entry looks
like::

    {"AlertID": "A0010020", "Description": "DB partitions per node",
     "Query": "max(mcs_partitions_per_instance)",
     "Warning": "> 300", "Error": "> 1500", "ConsecutiveProbes": "3"}

Condition strings are parsed here, at load time, into :class:`Condition` so the
evaluator never re-parses text per sample.
"""
from __future__ import annotations

import json
import math
import operator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml

OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    "==": operator.eq,
    "!=": operator.ne,
}

_EMPTY_MARKERS = {"", "null"}


class DefinitionError(ValueError):
    """The definition source cannot be used at all; the run must not start."""


class ConditionError(ValueError):
    """A single definition carries a field that cannot be evaluated."""


@dataclass(frozen=True)
class Condition:
    operator: str
    limit: float
    limit_text: str
    comment: str = ""

    @classmethod
    def parse(cls, text: str) -> "Condition":
        parts = text.split()
        if len(parts) < 2:
            raise ConditionError(f"condition '{text}' must look like '<op> <number> [comment]'")
        op, limit_text = parts[0], parts[1]
        if op not in OPERATORS:
            raise ConditionError(f"condition '{text}' uses unsupported operator '{op}'")
        try:
            limit = float(limit_text)
        except ValueError:
            raise ConditionError(f"condition '{text}' has a non-numeric limit '{limit_text}'") from None
        if math.isnan(limit):
            raise ConditionError(f"condition '{text}' has a NaN limit")
        return cls(operator=op, limit=limit, limit_text=limit_text, comment=" ".join(parts[2:]))

    def matches(self, value: float) -> bool:
        # Exact IEEE-754 comparison, including == and !=.
        return OPERATORS[self.operator](value, self.limit)

    def describe(self, raw_value: str) -> str:
        return f"{raw_value} {self.operator} {self.limit_text}"


@dataclass(frozen=True)
class AlertDefinition:
    alert_id: str
    description: str
    query: str
    telemetry_id: Optional[str] = None
    warning: Optional[Condition] = None
    error: Optional[Condition] = None
    ignore: Optional[Condition] = None
    label: Optional[str] = None
    exclude: Optional[str] = None
    consecutive_probes: Optional[int] = None
    step: Optional[int] = None
    probes: Optional[int] = None
    frequency: Optional[str] = None
    priority: Optional[str] = None
    ticket: Optional[str] = None

    @property
    def is_telemetry(self) -> bool:
        return self.warning is None and self.error is None

    @property
    def debounced(self) -> bool:
        return bool(self.consecutive_probes)


@dataclass(frozen=True)
class RejectedDefinition:
    alert_id: str
    description: str
    reason: str


DefinitionEntry = Union[AlertDefinition, RejectedDefinition]


@dataclass(frozen=True)
class DefinitionSet:
    entries: Tuple[DefinitionEntry, ...]
    source: Optional[Path] = None

    @property
    def definitions(self) -> List[AlertDefinition]:
        return [entry for entry in self.entries if isinstance(entry, AlertDefinition)]

    @property
    def rejected(self) -> List[RejectedDefinition]:
        return [entry for entry in self.entries if isinstance(entry, RejectedDefinition)]

    def __len__(self) -> int:
        return len(self.entries)


def _text(entry: Mapping[str, Any], key: str) -> Optional[str]:
    raw = entry.get(key)
    if raw is None:
        return None
    text = str(raw).strip()
    if text.lower() in _EMPTY_MARKERS:
        return None
    return text


def _integer(entry: Mapping[str, Any], key: str, minimum: int) -> Optional[int]:
    text = _text(entry, key)
    if text is None:
        return None
    try:
        value = int(text)
    except ValueError:
        raise ConditionError(f"{key} must be an integer (got '{text}')") from None
    if value < minimum:
        raise ConditionError(f"{key} must be >= {minimum} (got {value})")
    return value


def _condition(entry: Mapping[str, Any], key: str) -> Optional[Condition]:
    text = _text(entry, key)
    if text is None:
        return None
    try:
        return Condition.parse(text)
    except ConditionError as exc:
        raise ConditionError(f"{key}: {exc}") from None


def _severity_conditions(entry: Mapping[str, Any]) -> Tuple[Optional[Condition], Optional[Condition]]:
    warning = _condition(entry, "Warning")
    error = _condition(entry, "Error")
    single = _condition(entry, "Condition")
    if single is None:
        return warning, error
    if warning is not None or error is not None:
        raise ConditionError("Condition cannot be combined with Warning/Error")
    severity = (_text(entry, "Severity") or "Error").lower()
    if severity in {"error", "critical"}:
        return None, single
    if severity == "warning":
        return single, None
    raise ConditionError(f"unsupported Severity '{severity}'")


def parse_definition(entry: Any, index: int) -> AlertDefinition:
    """Build one definition.

    Structural problems raise :class:`DefinitionError`; fields that exist but
    cannot be evaluated raise :class:`ConditionError`.
    """

    if not isinstance(entry, dict):
        raise DefinitionError(f"definition #{index} is not an object")
    telemetry_id = _text(entry, "TelemetryID")
    alert_id = _text(entry, "AlertID") or _text(entry, "EventID") or telemetry_id
    if alert_id is None:
        raise DefinitionError(f"definition #{index} is missing AlertID/TelemetryID")
    query = _text(entry, "Query")
    if query is None:
        raise DefinitionError(f"definition #{index} ({alert_id}) is missing Query")

    warning, error = _severity_conditions(entry)
    return AlertDefinition(
        alert_id=alert_id,
        description=_text(entry, "Description") or "",
        query=query,
        telemetry_id=telemetry_id,
        warning=warning,
        error=error,
        ignore=_condition(entry, "Ignore"),
        label=_text(entry, "Label"),
        exclude=_text(entry, "Exclude"),
        consecutive_probes=_integer(entry, "ConsecutiveProbes", 0),
        step=_integer(entry, "Step", 1),
        probes=_integer(entry, "Probes", 1),
        frequency=_text(entry, "Frequency"),
        priority=_text(entry, "Priority"),
        ticket=_text(entry, "Ticket"),
    )


def build_definition_set(data: Any, source: Optional[Path] = None) -> DefinitionSet:
    if not isinstance(data, list):
        raise DefinitionError(f"{source or 'definitions'}: expected a list of definitions")
    entries: List[DefinitionEntry] = []
    seen: Dict[str, int] = {}
    for index, raw in enumerate(data, start=1):
        try:
            entry: DefinitionEntry = parse_definition(raw, index)
        except ConditionError as exc:
            alert_id = _text(raw, "AlertID") or _text(raw, "TelemetryID") or f"#{index}"
            entry = RejectedDefinition(alert_id=alert_id, description=_text(raw, "Description") or "", reason=str(exc))
        if entry.alert_id in seen:
            raise DefinitionError(
                f"duplicate id '{entry.alert_id}' in definitions #{seen[entry.alert_id]} and #{index}"
            )
        seen[entry.alert_id] = index
        entries.append(entry)
    return DefinitionSet(entries=tuple(entries), source=source)


def _load_document(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        if path.suffix.lower() in {".yaml", ".yml"}:
            return yaml.safe_load(handle)
        return json.load(handle)


def load_definitions(path: Path) -> DefinitionSet:
    if not path.is_file():
        raise DefinitionError(f"cannot find definitions file: {path}")
    try:
        data = _load_document(path)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise DefinitionError(f"failed to parse {path}: {exc}") from exc
    return build_definition_set(data, source=path)


def render_query(query: str, step_seconds: int, threshold: int) -> str:
    """Substitute the ``%PROBESTEP`` and ``%THRESHOLD`` placeholders."""

    return query.replace("%PROBESTEP", f"{step_seconds}s").replace("%THRESHOLD", str(threshold))


def derive_telemetry_definitions(definitions: Sequence[AlertDefinition]) -> List[Dict[str, str]]:
    """Collection entries for every TelemetryID, first definition wins, sorted by id."""

    collected: Dict[str, Dict[str, str]] = {}
    for definition in definitions:
        telemetry_id = definition.telemetry_id
        if telemetry_id is None or telemetry_id in collected:
            continue
        entry = {
            "TelemetryID": telemetry_id,
            "Description": definition.description,
            "Query": definition.query,
        }
        if definition.step is not None:
            entry["Step"] = str(definition.step)
        if definition.probes is not None:
            entry["Probes"] = str(definition.probes)
        if definition.frequency is not None:
            entry["Frequency"] = definition.frequency
        collected[telemetry_id] = entry
    return [collected[key] for key in sorted(collected)]
