from __future__ import annotations

import datetime as dt
import io
import json
from typing import Any, Dict, List
from urllib.error import HTTPError, URLError
from urllib.parse import parse_qs, urlparse

import pytest

from healthcheck import sources
from healthcheck.definitions import parse_definition
from healthcheck.probes import QueryError, RangeResult, SingleResult
from healthcheck.sources import CollectedTelemetrySource, ExpositionSource, PrometheusSource, QueryWindow

_END = dt.datetime(2024, 8, 19, 20, 10, 0, tzinfo=dt.timezone.utc)


class _FakeResponse:
    def __init__(self, payload: Dict[str, Any]) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None


class _FakeUrlopen:
    def __init__(self, payload: Any) -> None:
        self._payload = payload
        self.requests: List[Any] = []
        self.timeouts: List[float] = []

    def __call__(self, request, timeout, context=None):  # type: ignore[no-untyped-def]
        self.requests.append(request)
        self.timeouts.append(timeout)
        if isinstance(self._payload, Exception):
            raise self._payload
        return _FakeResponse(self._payload)


def _definition(**fields: str):
    entry = {"AlertID": "A1", "Query": "up"}
    entry.update(fields)
    return parse_definition(entry, 1)


def test_prometheus_source_issues_range_query(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeUrlopen(
        {"status": "success", "data": {"result": [{"metric": {"job": "s3"}, "values": [[1, "2"], [61, "3"]]}]}}
    )
    monkeypatch.setattr(sources, "urlopen", fake)
    source = PrometheusSource("https://prom:9191/", token="secret", timeout_seconds=5.0, threshold=42)

    response = source.fetch(
        _definition(Query="rate(x[%PROBESTEP]) > %THRESHOLD"), QueryWindow(end=_END, step_seconds=60, probes=3)
    )

    assert response.ok
    assert isinstance(response.results[0], RangeResult)
    assert [sample.value for sample in response.results[0].samples] == [2.0, 3.0]
    request = fake.requests[0]
    url = urlparse(request.full_url)
    params = parse_qs(url.query)
    assert url.path == "/api/v1/query_range"
    assert params["query"] == ["rate(x[60s]) > 42"]
    assert params["start"] == ["2024-08-19T20:08:00Z"]
    assert params["end"] == ["2024-08-19T20:10:00Z"]
    assert params["step"] == ["60s"]
    assert request.get_header("Authorization") == "Bearer secret"
    assert fake.timeouts == [5.0]


def test_prometheus_source_instant_query_and_basic_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeUrlopen({"status": "success", "data": {"result": [{"metric": {}, "value": [1, "7"]}]}})
    monkeypatch.setattr(sources, "urlopen", fake)
    source = PrometheusSource("http://prom:9191", username="admin", password="pw")

    response = source.fetch(_definition(), QueryWindow(end=_END, step_seconds=300, probes=1, instant=True))

    assert isinstance(response.results[0], SingleResult)
    url = urlparse(fake.requests[0].full_url)
    assert url.path == "/api/v1/query"
    assert parse_qs(url.query)["time"] == ["2024-08-19T20:10:00Z"]
    assert fake.requests[0].get_header("Authorization") == "Basic YWRtaW46cHc="


def test_prometheus_source_returns_error_body_from_http_error(monkeypatch: pytest.MonkeyPatch) -> None:
    body = json.dumps({"status": "error", "errorType": "bad_data", "error": "parse error"}).encode("utf-8")
    error = HTTPError("http://prom/api/v1/query", 400, "Bad Request", {}, io.BytesIO(body))  # type: ignore[arg-type]
    monkeypatch.setattr(sources, "urlopen", _FakeUrlopen(error))

    response = PrometheusSource("http://prom").query("up(")

    assert not response.ok
    assert response.error == "parse error"


def test_prometheus_source_wraps_transport_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sources, "urlopen", _FakeUrlopen(URLError("connection refused")))
    with pytest.raises(QueryError):
        PrometheusSource("http://prom").query("up")


def test_oldest_timestamp(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        sources,
        "urlopen",
        _FakeUrlopen({"status": "success", "data": {"result": [{"metric": {}, "value": [1, "1611945600.432"]}]}}),
    )
    assert PrometheusSource("http://prom").oldest_timestamp() == pytest.approx(1611945600.432)

    monkeypatch.setattr(sources, "urlopen", _FakeUrlopen({"status": "success", "data": {"result": []}}))
    assert PrometheusSource("http://prom").oldest_timestamp() is None

    monkeypatch.setattr(sources, "urlopen", _FakeUrlopen({"status": "error", "error": "boom"}))
    with pytest.raises(QueryError):
        PrometheusSource("http://prom").oldest_timestamp()


def _collected() -> Dict[str, Any]:
    return {
        "SystemName": "cluster01",
        "StartTime": "2024-08-19T20:00:00Z",
        "EndTime": "2024-08-19T20:10:00Z",
        "Step": "300",
        "Probes": "3",
        "Telemetry": [
            {
                "TelemetryID": "T1",
                "Prometheus": {"status": "success", "data": {"result": [{"metric": {}, "values": [[1, "4"]]}]}},
            },
            {"TelemetryID": "T1", "Prometheus": {"status": "error", "error": "shadowed"}},
        ],
    }


def test_collected_source_replays_by_telemetry_id() -> None:
    source = CollectedTelemetrySource(_collected())
    window = source.window()

    assert source.system_name == "cluster01"
    assert window.end == _END
    assert (window.step_seconds, window.probes) == (300, 3)
    response = source.fetch(_definition(AlertID="A9", TelemetryID="T1"), window)
    assert response.ok
    assert response.results[0].samples[0].value == 4.0
    with pytest.raises(QueryError):
        source.fetch(_definition(AlertID="A2", TelemetryID="T2"), window)


def test_collected_source_defaults_probes_and_derives_step() -> None:
    document = _collected()
    del document["Step"]
    del document["Probes"]
    document["StartTime"] = "2024-08-19T19:11:00Z"

    window = CollectedTelemetrySource(document).window()

    assert window.probes == 60
    assert window.step_seconds == 60


def test_collected_source_rejects_documents_without_telemetry() -> None:
    with pytest.raises(QueryError):
        CollectedTelemetrySource({"SystemName": "x"})


_EXPOSITION = """\
# HELP node_load1 1m load average.
# TYPE node_load1 gauge
node_load1{instance="a"} 1.5
node_load1{instance="b"} 3
# HELP up Target health.
# TYPE up gauge
up 1
"""


def test_exposition_source_answers_plain_metric_names() -> None:
    source = ExpositionSource(_EXPOSITION)

    response = source.fetch(
        _definition(Query="node_load1"), QueryWindow(end=_END, step_seconds=60, probes=1, instant=True)
    )

    assert response.ok
    values = {result.metric["instance"]: result.sample.value for result in response.results}
    assert values == {"a": 1.5, "b": 3.0}
    assert all(result.metric["__name__"] == "node_load1" for result in response.results)
    assert response.results[1].sample.raw == "3"


def test_exposition_source_range_window_and_unknown_metric() -> None:
    source = ExpositionSource(_EXPOSITION)
    window = QueryWindow(end=_END, step_seconds=60, probes=5)

    response = source.fetch(_definition(Query="up"), window)
    assert isinstance(response.results[0], RangeResult)
    assert [sample.value for sample in response.results[0].samples] == [1.0]
    assert response.results[0].samples[0].timestamp == _END.timestamp()

    assert source.fetch(_definition(Query="missing_metric"), window).results == ()
    with pytest.raises(QueryError):
        source.fetch(_definition(Query="rate(up[5m])"), window)
