"""Backends that answer a definition's query over a probe window.

Every source returns a decoded :class:`~healthcheck.probes.QueryResponse`.
Transport problems raise :class:`~healthcheck.probes.QueryError`; a backend that
answered with a non-success status is returned as-is so the caller can report
it as a failed query.
"""
from __future__ import annotations

import base64
import datetime as _dt
import json
import logging
import re
import socket
import ssl
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from prometheus_client.parser import text_string_to_metric_families

from healthcheck.definitions import AlertDefinition, render_query
from healthcheck.probes import (
    _PROM_DATE_FMT,
    ProbeSample,
    QueryError,
    QueryResponse,
    RangeResult,
    SingleResult,
    decode_response,
)

logger = logging.getLogger(__name__)

_OLDEST_TIMESTAMP_QUERY = "prometheus_tsdb_lowest_timestamp_seconds"
_METRIC_NAME = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")


@dataclass(frozen=True)
class QueryWindow:
    """``probes`` samples ending at ``end``, ``step_seconds`` apart."""

    end: _dt.datetime
    step_seconds: int
    probes: int
    instant: bool = False

    @property
    def start(self) -> _dt.datetime:
        return self.end - _dt.timedelta(seconds=(self.probes - 1) * self.step_seconds)

    def for_definition(self, definition: AlertDefinition) -> "QueryWindow":
        if self.instant:
            return replace(self, probes=1)
        return replace(
            self,
            step_seconds=definition.step or self.step_seconds,
            probes=definition.probes or self.probes,
        )


class ProbeResultSource(Protocol):
    def fetch(self, definition: AlertDefinition, window: QueryWindow) -> QueryResponse:
        ...


def _utc(moment: _dt.datetime) -> _dt.datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=_dt.timezone.utc)
    return moment.astimezone(_dt.timezone.utc)


class PrometheusSource:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_seconds: float = 30.0,
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify_tls: bool = True,
        threshold: int = 1000000000,
    ) -> None:
        if base_url.endswith("/"):
            self._base_url = base_url[:-1]
        else:
            self._base_url = base_url
        self._token = token
        self._username = username
        self._password = password
        self._timeout_seconds = timeout_seconds
        self._threshold = threshold
        self._context: Optional[ssl.SSLContext] = None
        if not verify_tls:
            self._context = ssl.create_default_context()
            self._context.check_hostname = False
            self._context.verify_mode = ssl.CERT_NONE

    @property
    def base_url(self) -> str:
        return self._base_url

    def fetch(self, definition: AlertDefinition, window: QueryWindow) -> QueryResponse:
        query = render_query(definition.query, window.step_seconds, self._threshold)
        end = _utc(window.end).strftime(_PROM_DATE_FMT)
        if window.instant:
            return self.query(query, end)
        start = _utc(window.start).strftime(_PROM_DATE_FMT)
        return self.query_range(query, start, end, window.step_seconds)

    def query(self, query: str, time: Optional[str] = None) -> QueryResponse:
        params: Dict[str, object] = {"query": query}
        if time:
            params["time"] = time
        return decode_response(self._get("/api/v1/query", params))

    def query_range(self, query: str, start: str, end: str, step_seconds: int) -> QueryResponse:
        params = {"query": query, "start": start, "end": end, "step": f"{step_seconds}s"}
        return decode_response(self._get("/api/v1/query_range", params))

    def oldest_timestamp(self) -> Optional[float]:
        """Epoch of the oldest sample in the TSDB, ``None`` when Prometheus has no value."""

        response = self.query(_OLDEST_TIMESTAMP_QUERY)
        if not response.ok:
            raise QueryError(f"{_OLDEST_TIMESTAMP_QUERY} failed: {response.error or response.status}")
        for result in response.results:
            for sample in result.samples:
                if sample.value is not None:
                    return sample.value
        logger.debug("BLANK QUERY: %s", _OLDEST_TIMESTAMP_QUERY)
        return None

    def _get(self, path: str, params: Mapping[str, object]) -> Any:
        url = f"{self._base_url}{path}?{urlencode(params)}"
        request = Request(url)
        if self._token:
            request.add_header("Authorization", f"Bearer {self._token}")
        elif self._username:
            credentials = f"{self._username}:{self._password or ''}".encode("utf-8")
            request.add_header("Authorization", "Basic " + base64.b64encode(credentials).decode("ascii"))
        logger.debug("GET %s", url)
        try:
            with urlopen(request, timeout=self._timeout_seconds, context=self._context) as response:
                body = response.read().decode("utf-8")
        except HTTPError as exc:
            # Prometheus reports bad queries as 4xx with a JSON error body.
            body = exc.read().decode("utf-8", errors="replace")
            try:
                return json.loads(body)
            except ValueError:
                raise QueryError(f"HTTP {exc.code} from {path}: {body.strip() or exc.reason}") from exc
        except (URLError, socket.timeout, OSError) as exc:
            raise QueryError(f"cannot reach {self._base_url}: {exc}") from exc
        logger.debug("REPLY: %s", body)
        try:
            return json.loads(body)
        except ValueError as exc:
            raise QueryError(f"invalid JSON reply from {path}: {exc}") from exc


def _parse_time(raw: Any) -> _dt.datetime:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return _dt.datetime.fromtimestamp(float(raw), tz=_dt.timezone.utc)
    text = str(raw).strip()
    try:
        return _dt.datetime.fromtimestamp(float(text), tz=_dt.timezone.utc)
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _utc(_dt.datetime.fromisoformat(text))


class CollectedTelemetrySource:
    """Replays a collected-telemetry file instead of querying Prometheus."""

    DEFAULT_PROBES = 60

    def __init__(self, document: Mapping[str, Any], source: Optional[Path] = None) -> None:
        if not isinstance(document, dict):
            raise QueryError(f"{source or 'collected telemetry'}: expected a JSON object")
        telemetry = document.get("Telemetry")
        if not isinstance(telemetry, list):
            raise QueryError(f"{source or 'collected telemetry'}: missing Telemetry array")
        self.system_name = str(document.get("SystemName") or "")
        self.source = source
        self._header = document
        self._entries: Dict[str, Any] = {}
        for entry in telemetry:
            if not isinstance(entry, dict) or not entry.get("TelemetryID"):
                continue
            self._entries.setdefault(str(entry["TelemetryID"]), entry.get("Prometheus"))

    @classmethod
    def from_file(cls, path: Path) -> "CollectedTelemetrySource":
        try:
            with path.open("r", encoding="utf-8") as handle:
                document = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise QueryError(f"failed to read collected telemetry {path}: {exc}") from exc
        return cls(document, source=path)

    @property
    def telemetry_ids(self) -> List[str]:
        return list(self._entries)

    def window(self) -> QueryWindow:
        header = self._header
        try:
            end = _parse_time(header["EndTime"])
            step = int(header.get("Step") or 0)
            probes = int(header.get("Probes") or self.DEFAULT_PROBES)
        except (KeyError, TypeError, ValueError) as exc:
            raise QueryError(f"{self.source or 'collected telemetry'}: invalid window header: {exc}") from exc
        if step <= 0 and header.get("StartTime"):
            start = _parse_time(header["StartTime"])
            step = int((end - start).total_seconds() // max(probes - 1, 1))
        return QueryWindow(end=end, step_seconds=max(step, 1), probes=probes)

    def fetch(self, definition: AlertDefinition, window: QueryWindow) -> QueryResponse:
        key = definition.telemetry_id or definition.alert_id
        if key not in self._entries:
            raise QueryError(f"no collected telemetry for {key}")
        return decode_response(self._entries[key])


def _sample_text(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return repr(value)


class ExpositionSource:
    """Answers plain metric-name queries from a Prometheus text-format dump."""

    def __init__(self, text: str) -> None:
        self._series: Dict[str, Dict[Tuple[Tuple[str, str], ...], List[Tuple[Optional[float], float]]]] = {}
        for family in text_string_to_metric_families(text):
            for sample in family.samples:
                labels = dict(sample.labels)
                labels["__name__"] = sample.name
                key = tuple(sorted(labels.items()))
                self._series.setdefault(sample.name, {}).setdefault(key, []).append(
                    (getattr(sample, "timestamp", None), float(sample.value))
                )

    @classmethod
    def from_file(cls, path: Path) -> "ExpositionSource":
        with path.open("r", encoding="utf-8") as handle:
            return cls(handle.read())

    def fetch(self, definition: AlertDefinition, window: QueryWindow) -> QueryResponse:
        name = definition.query.strip()
        if not _METRIC_NAME.match(name):
            raise QueryError(f"only plain metric names can be evaluated offline (got '{name}')")
        fallback = _utc(window.end).timestamp()
        results = []
        for labels, points in self._series.get(name, {}).items():
            samples = [
                ProbeSample.from_pair((float(timestamp) if timestamp is not None else fallback, _sample_text(value)))
                for timestamp, value in points
            ]
            samples.sort(key=lambda sample: sample.timestamp)
            metric = dict(labels)
            if window.instant:
                results.append(SingleResult(metric=metric, sample=samples[-1]))
            else:
                results.append(RangeResult(metric=metric, samples=tuple(samples[-window.probes:])))
        return QueryResponse(status="success", results=tuple(results))
