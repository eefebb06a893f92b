from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore


DEFAULT_CONFIG_FILE = Path("healthcheck.toml")
PROTOCOLS = ("https", "http")
DEFAULT_PORT = 9191

# Range queries before this instant are rejected (September 13, 2020).
EARLIEST_QUERY_EPOCH = 1600000000


@dataclass(frozen=True)
class ProbeSettings:
    interval_seconds: int
    probes: int
    max_probes: int


PROBE_DEFAULTS = ProbeSettings(
    interval_seconds=300,
    probes=24,
    max_probes=4000,
)


@dataclass(frozen=True)
class RunSettings:
    prom_url: Optional[str] = None
    host: Optional[str] = None
    port: int = DEFAULT_PORT
    protocol: str = "https"
    protocol_forced: bool = False
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    verify_tls: bool = True
    timeout_seconds: float = 30.0
    interval_seconds: int = PROBE_DEFAULTS.interval_seconds
    probes: int = PROBE_DEFAULTS.probes
    max_probes: int = PROBE_DEFAULTS.max_probes
    probes_enabled: bool = True
    threshold: int = 1000000000
    workers: int = 1
    definitions_file: Path = Path("hcpcs_hourly_alerts.json")
    output_prefix: str = "health_report_metrics"
    log_level: str = "WARNING"

    def base_url(self) -> str:
        if self.prom_url:
            return self.prom_url.rstrip("/")
        if not self.host:
            raise ValueError("Prometheus node name or IP is a required parameter")
        return f"{self.protocol}://{self.host}:{self.port}"

    def override(self, **changes: Any) -> "RunSettings":
        """Return a copy with every non-``None`` change applied."""

        applied = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **applied)


_PATH_FIELDS = {"definitions_file"}
_INT_FIELDS = {"port", "interval_seconds", "probes", "max_probes", "threshold", "workers"}
_FLOAT_FIELDS = {"timeout_seconds"}
_BOOL_FIELDS = {"verify_tls", "probes_enabled", "protocol_forced"}


def _coerce_setting(key: str, raw: Any) -> Any:
    if key in _PATH_FIELDS:
        return Path(str(raw))
    if key in _INT_FIELDS:
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise ValueError(f"setting '{key}' must be an integer (got {raw!r})") from None
    if key in _FLOAT_FIELDS:
        try:
            return float(raw)
        except (TypeError, ValueError):
            raise ValueError(f"setting '{key}' must be a number (got {raw!r})") from None
    if key in _BOOL_FIELDS:
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in {"1", "true", "yes", "on"}
    return str(raw)


def load_config(path: Optional[Path]) -> Dict[str, Any]:
    if path is None or not path.exists():
        return {}
    with path.open("rb") as fp:
        data = tomllib.load(fp)
    # Settings may live at the top level or under a [healthcheck] table.
    section = data.get("healthcheck", data)
    if not isinstance(section, dict):
        raise ValueError(f"{path}: [healthcheck] must be a table")
    return section


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RunSettings:
    """Resolve defaults, then the TOML config file, then environment variables."""

    env = os.environ if environ is None else environ
    known = {item.name for item in fields(RunSettings)}
    values: Dict[str, Any] = {}

    if config_path is None and DEFAULT_CONFIG_FILE.exists():
        config_path = DEFAULT_CONFIG_FILE
    for key, raw in load_config(config_path).items():
        if key not in known:
            raise ValueError(f"unknown setting '{key}' in {config_path}")
        values[key] = _coerce_setting(key, raw)

    env_map = {
        "HEALTHCHECK_PROM_URL": "prom_url",
        "PROMETHEUS_BEARER_TOKEN": "token",
        "HEALTHCHECK_WORKERS": "workers",
        "LOG_LEVEL": "log_level",
    }
    for env_key, field_name in env_map.items():
        raw = env.get(env_key)
        if raw:
            values[field_name] = _coerce_setting(field_name, raw)

    return RunSettings(**values)


def validate_settings(settings: RunSettings) -> None:
    if settings.protocol not in PROTOCOLS:
        raise ValueError(f"invalid protocol '{settings.protocol}' (expected http or https)")
    if settings.interval_seconds <= 0:
        raise ValueError(f"probes interval (in seconds) must be a positive integer ({settings.interval_seconds})")
    if settings.probes <= 0:
        raise ValueError(f"number of probes must be a positive integer ({settings.probes})")
    if settings.probes > settings.max_probes:
        raise ValueError(
            f"number of probes must be equal or less than {settings.max_probes} ({settings.probes} is too high)"
        )
    if settings.timeout_seconds <= 0:
        raise ValueError("timeout must be positive")
    if settings.workers < 1:
        raise ValueError("workers must be at least 1")
