#!/usr/bin/env python3
"""Evaluate alert definitions against a live Prometheus.

Each definition's query is sampled over a window of probes ending at ``--time``
(default: now). Threshold crossings that hold for the configured number of
consecutive probes are reported as WARNING/ERROR lines, telemetry definitions
as Avg/Max/Min summaries. Results land in ``<prefix>.log``, ``<prefix>.json``
and ``<prefix>_pretty.json``; the previous run's files are kept as ``.bak``.
"""
from __future__ import annotations

import argparse
import datetime as _dt
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence, Tuple

from healthcheck.definitions import DefinitionError, load_definitions
from healthcheck.engine import Evaluator, write_summary
from healthcheck.logger import setup_logging
from healthcheck.probes import QueryError, format_timestamp
from healthcheck.report import ReportWriter
from healthcheck.settings import (
    DEFAULT_PORT,
    EARLIEST_QUERY_EPOCH,
    RunSettings,
    load_settings,
    validate_settings,
)
from healthcheck.sources import PrometheusSource, QueryWindow

logger = logging.getLogger(__name__)

_VERBOSE_LEVELS = {"info": "INFO", "debug": "DEBUG"}


def parse_time(text: str) -> _dt.datetime:
    """Parse ``2024-08-19T20:10:30.781Z`` style timestamps; must be after 2020-09-13."""

    raw = text.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        moment = _dt.datetime.fromisoformat(raw)
    except ValueError:
        raise ValueError(f"DATE FORMAT IS INCORRECT: {text} (expected format: 2024-08-19T20:10:30.781Z)") from None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=_dt.timezone.utc)
    if moment.timestamp() < EARLIEST_QUERY_EPOCH:
        raise ValueError(f"DATE IS TOO OLD: {text} (expected after 2020)")
    return moment.astimezone(_dt.timezone.utc)


def split_host(value: str) -> Tuple[str, Optional[int]]:
    host, sep, port = value.rpartition(":")
    if sep and host and port.isdigit():
        return host, int(port)
    return value, None


def report_prefix(settings: RunSettings, date_suffix: str) -> str:
    definitions_short = settings.definitions_file.stem
    host = settings.host or "prometheus"
    parts = [settings.output_prefix, host]
    if settings.port != DEFAULT_PORT:
        parts.append(str(settings.port))
    parts.append(definitions_short)
    if date_suffix:
        parts.append(date_suffix)
    return "_".join(parts)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate alert definitions against Prometheus metrics")
    parser.add_argument("-c", "--host", help="FQDN or IP address of Prometheus, optionally with a port number")
    parser.add_argument("--prom-url", help="Full base URL for the Prometheus HTTP API (overrides -c/-n/-s)")
    parser.add_argument("-n", "--port", type=int, help=f"Prometheus port (default: {DEFAULT_PORT})")
    parser.add_argument("-s", "--protocol", choices=("http", "https"), help="http or https (default: https)")
    parser.add_argument("-t", "--time", help="End of the probe window, e.g. 2024-08-19T20:10:30.781Z (default: now)")
    parser.add_argument("-f", "--definitions", type=Path, help="JSON or YAML file with alert definitions")
    parser.add_argument(
        "-b", "--no-probes", action="store_true", help="Disable probes mode (switch to a single-query mode)"
    )
    parser.add_argument("-e", "--probes", type=int, help="Number of probes (default: 24)")
    parser.add_argument("-i", "--interval", type=int, help="Interval between probes in seconds (default: 300)")
    parser.add_argument("-m", "--max-probes", type=int, help=argparse.SUPPRESS)
    parser.add_argument("-q", "--threshold", type=int, help="Value substituted for %%THRESHOLD in queries")
    parser.add_argument("-o", "--output-prefix", help="Output file prefix (default: health_report_metrics)")
    parser.add_argument("-v", "--verbose", choices=sorted(_VERBOSE_LEVELS), help="Verbose mode: info or debug")
    parser.add_argument("--config", type=Path, help="TOML settings file (default: ./healthcheck.toml if present)")
    parser.add_argument("--token", help="Bearer token for Prometheus (default: $PROMETHEUS_BEARER_TOKEN)")
    parser.add_argument("--user", help="Username for HTTP basic authentication")
    parser.add_argument("--password", help="Password for HTTP basic authentication")
    parser.add_argument("--insecure", action="store_true", help="Skip TLS certificate verification")
    parser.add_argument("--timeout-seconds", type=float, help="HTTP timeout per query (default: 30)")
    parser.add_argument("--workers", type=int, help="Number of definitions evaluated in parallel (default: 1)")
    parser.add_argument(
        "--fail-on-alert",
        action="store_true",
        help="Exit with status 2 when any WARNING or ERROR is reported",
    )
    return parser.parse_args(argv)


def resolve_settings(args: argparse.Namespace) -> RunSettings:
    settings = load_settings(args.config)
    host, port = (None, None)
    if args.host:
        host, port = split_host(args.host)
    settings = settings.override(
        prom_url=args.prom_url,
        host=host,
        port=args.port or port,
        protocol=args.protocol,
        protocol_forced=True if args.protocol else None,
        token=args.token,
        username=args.user,
        password=args.password,
        verify_tls=False if args.insecure else None,
        timeout_seconds=args.timeout_seconds,
        interval_seconds=args.interval,
        probes=args.probes,
        max_probes=args.max_probes,
        probes_enabled=False if args.no_probes else None,
        threshold=args.threshold,
        workers=args.workers,
        definitions_file=args.definitions,
        output_prefix=args.output_prefix,
        log_level=_VERBOSE_LEVELS.get(args.verbose or ""),
    )
    validate_settings(settings)
    return settings


def build_source(settings: RunSettings) -> PrometheusSource:
    return PrometheusSource(
        settings.base_url(),
        token=settings.token,
        timeout_seconds=settings.timeout_seconds,
        username=settings.username,
        password=settings.password,
        verify_tls=settings.verify_tls,
        threshold=settings.threshold,
    )


def connect(settings: RunSettings) -> PrometheusSource:
    """Probe the oldest TSDB timestamp, switching https to http when it fails."""

    source = build_source(settings)
    try:
        oldest = source.oldest_timestamp()
    except QueryError as exc:
        logger.debug("FAILED TO GET OLDEST METRIC TIMESTAMP on %s: %s", source.base_url, exc)
        if settings.prom_url or settings.protocol_forced or settings.protocol != "https":
            return source
        switched = build_source(settings.override(protocol="http"))
        logger.info("Auto-switching protocol to http - collecting from %s", switched.base_url)
        return switched
    if oldest is None:
        logger.debug("INFO: oldest metric timestamp is not available")
    else:
        logger.info("Oldest metric timestamp: %s", format_timestamp(oldest))
    return source


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    try:
        settings = resolve_settings(args)
        end = parse_time(args.time) if args.time else _dt.datetime.now(tz=_dt.timezone.utc)
        settings.base_url()
    except ValueError as exc:
        print(f"::error ::{exc}", file=sys.stderr)
        return 1
    setup_logging(settings.log_level)

    try:
        definition_set = load_definitions(settings.definitions_file)
    except DefinitionError as exc:
        print(f"::error ::{exc}", file=sys.stderr)
        return 1
    logger.info("Using metric definition file: %s", settings.definitions_file)

    window = QueryWindow(
        end=end,
        step_seconds=settings.interval_seconds,
        probes=settings.probes,
        instant=not settings.probes_enabled,
    )
    if settings.probes_enabled:
        logger.info(
            "Query range: start=%s, end=%s, step=%ss",
            format_timestamp(window.start.timestamp()),
            format_timestamp(window.end.timestamp()),
            window.step_seconds,
        )

    source = connect(settings)
    evaluator = Evaluator(
        source,
        window,
        verbose=bool(args.verbose),
        workers=settings.workers,
    )

    def _cancel(signum: int, _frame: object) -> None:
        logger.warning("Received signal %s; finishing the current definitions", signum)
        evaluator.cancel()

    previous = {sig: signal.signal(sig, _cancel) for sig in (signal.SIGINT, signal.SIGTERM)}
    date_suffix = end.strftime("%Y%b%d_%H%M%S%Z") if args.time else ""
    try:
        with ReportWriter(report_prefix(settings, date_suffix)) as writer:
            summary = evaluator.run(definition_set, writer)
            write_summary(summary, writer)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print(f"Wrote report to {writer.log_path}")
    if summary.cancelled:
        return 130
    if summary.alert_count and args.fail_on_alert:
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
