from __future__ import annotations

from pathlib import Path

import pytest

from healthcheck.settings import PROBE_DEFAULTS, RunSettings, load_settings, validate_settings


def test_defaults_without_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    settings = load_settings(environ={})

    assert settings.interval_seconds == PROBE_DEFAULTS.interval_seconds == 300
    assert settings.probes == 24
    assert settings.max_probes == 4000
    assert settings.port == 9191
    assert settings.threshold == 1000000000
    assert settings.output_prefix == "health_report_metrics"


def test_config_file_then_environment(tmp_path: Path) -> None:
    config = tmp_path / "healthcheck.toml"
    config.write_text(
        '[healthcheck]\nprobes = 12\ninterval_seconds = 60\nverify_tls = false\ndefinitions_file = "alerts.yaml"\n',
        encoding="utf-8",
    )

    settings = load_settings(config, environ={"HEALTHCHECK_WORKERS": "3", "PROMETHEUS_BEARER_TOKEN": "tok"})

    assert settings.probes == 12
    assert settings.interval_seconds == 60
    assert settings.verify_tls is False
    assert settings.definitions_file == Path("alerts.yaml")
    assert settings.workers == 3
    assert settings.token == "tok"


def test_unknown_config_key_is_rejected(tmp_path: Path) -> None:
    config = tmp_path / "healthcheck.toml"
    config.write_text("probe_count = 3\n", encoding="utf-8")
    with pytest.raises(ValueError, match="probe_count"):
        load_settings(config, environ={})


def test_override_ignores_unset_values() -> None:
    settings = RunSettings(probes=10).override(probes=None, host="prom", port=9090)
    assert settings.probes == 10
    assert settings.base_url() == "https://prom:9090"
    assert RunSettings(prom_url="http://prom:9090/").base_url() == "http://prom:9090"


def test_base_url_requires_host() -> None:
    with pytest.raises(ValueError):
        RunSettings().base_url()


@pytest.mark.parametrize(
    "changes",
    [
        {"probes": 4001},
        {"probes": 0},
        {"interval_seconds": -1},
        {"protocol": "ftp"},
        {"workers": 0},
        {"timeout_seconds": 0.0},
    ],
)
def test_validate_settings_rejects_bad_values(changes: dict) -> None:
    with pytest.raises(ValueError):
        validate_settings(RunSettings().override(**changes))
