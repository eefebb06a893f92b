"""Probe samples and the decoded shape of a Prometheus query response.

Prometheus answers instant queries with one ``value`` pair per series and range
queries with a ``values`` list. Both are decoded once, here, into
:class:`SingleResult` or :class:`RangeResult` so the evaluator only ever walks an
ordered list of :class:`ProbeSample`.
"""
from __future__ import annotations

import datetime as _dt
import math
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

_PROM_DATE_FMT = "%Y-%m-%dT%H:%M:%SZ"


class QueryError(RuntimeError):
    """The backend could not answer a query."""


@dataclass(frozen=True)
class ProbeSample:
    """One ``[timestamp, "value"]`` pair; ``value`` is ``None`` for blank samples."""

    timestamp: float
    raw: Optional[str]
    value: Optional[float]

    @classmethod
    def from_pair(cls, pair: Any) -> "ProbeSample":
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise QueryError(f"malformed sample {pair!r}: expected [timestamp, value]")
        timestamp, raw = pair
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            try:
                timestamp = float(timestamp)
            except (TypeError, ValueError):
                raise QueryError(f"malformed sample timestamp {pair[0]!r}") from None
        raw_text = None if raw is None else str(raw)
        return cls(timestamp=timestamp, raw=raw_text, value=_coerce_float(raw_text))

    @property
    def is_blank(self) -> bool:
        return self.value is None

    def as_pair(self) -> List[object]:
        return [self.timestamp, self.raw]


@dataclass(frozen=True)
class SingleResult:
    metric: Mapping[str, str]
    sample: ProbeSample

    @property
    def samples(self) -> Sequence[ProbeSample]:
        return (self.sample,)


@dataclass(frozen=True)
class RangeResult:
    metric: Mapping[str, str]
    samples: Sequence[ProbeSample]


ProbeResult = Union[SingleResult, RangeResult]


@dataclass(frozen=True)
class QueryResponse:
    status: str
    results: Tuple[ProbeResult, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


def _coerce_float(raw: object) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value):
        return None
    return value


def _decode_metric(entry: Mapping[str, Any]) -> Mapping[str, str]:
    metric = entry.get("metric") or {}
    if not isinstance(metric, dict):
        raise QueryError(f"malformed result entry: metric must be an object ({metric!r})")
    return {str(key): str(value) for key, value in metric.items()}


def decode_result(entry: Any) -> ProbeResult:
    if not isinstance(entry, dict):
        raise QueryError(f"malformed result entry {entry!r}")
    metric = _decode_metric(entry)
    if "values" in entry:
        values = entry["values"]
        if not isinstance(values, list):
            raise QueryError("malformed result entry: values must be an array")
        return RangeResult(metric=metric, samples=tuple(ProbeSample.from_pair(pair) for pair in values))
    if "value" in entry:
        return SingleResult(metric=metric, sample=ProbeSample.from_pair(entry["value"]))
    raise QueryError("result entry has neither 'value' nor 'values'")


def decode_response(payload: Any) -> QueryResponse:
    if not isinstance(payload, dict):
        raise QueryError(f"unexpected Prometheus reply: {payload!r}")
    status = str(payload.get("status") or "")
    if status != "success":
        error = payload.get("error")
        return QueryResponse(status=status or "error", error=None if error is None else str(error))
    result = (payload.get("data") or {}).get("result")
    if result is None:
        result = []
    if not isinstance(result, list):
        raise QueryError("Prometheus response missing result array")
    return QueryResponse(status=status, results=tuple(decode_result(entry) for entry in result))


def format_number(value: float) -> str:
    """Render a computed value with at most two decimals, dropping trailing zeros."""

    if float(value).is_integer():
        return str(int(value))
    return ("%.2f" % value).rstrip("0").rstrip(".")


def format_timestamp(timestamp: float) -> str:
    moment = _dt.datetime.fromtimestamp(float(timestamp), tz=_dt.timezone.utc)
    return moment.strftime(_PROM_DATE_FMT)
