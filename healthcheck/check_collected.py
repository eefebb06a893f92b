#!/usr/bin/env python3
"""Evaluate alert definitions against a collected-telemetry file.

The file is produced on the customer site while Prometheus is reachable and
analysed later without it::

    {"SystemName": "cluster01", "StartTime": "...", "EndTime": "...",
     "Step": "300", "Probes": "60",
     "Telemetry": [{"TelemetryID": "T001001", "Prometheus": {...}}]}

Definitions are matched to the recorded replies by ``TelemetryID``.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from healthcheck.definitions import DefinitionError, load_definitions
from healthcheck.engine import Evaluator, write_summary
from healthcheck.logger import setup_logging
from healthcheck.probes import QueryError, format_timestamp
from healthcheck.report import ReportWriter
from healthcheck.settings import load_settings
from healthcheck.sources import CollectedTelemetrySource

logger = logging.getLogger(__name__)

_DEFAULT_DEFINITIONS = Path("hcpcs_alerts_def.json")


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate alert definitions against collected telemetry")
    parser.add_argument("-c", "--collected", type=Path, required=True, help="File with collected telemetry")
    parser.add_argument(
        "-f",
        "--definitions",
        type=Path,
        default=_DEFAULT_DEFINITIONS,
        help=f"Alerts definition file (default: {_DEFAULT_DEFINITIONS})",
    )
    parser.add_argument("-o", "--output-prefix", help="Output file prefix (default: health_report_metrics)")
    parser.add_argument("-v", "--verbose", choices=("info", "debug"), help="Verbose mode: info or debug")
    parser.add_argument("--config", type=Path, help="TOML settings file (default: ./healthcheck.toml if present)")
    parser.add_argument(
        "--fail-on-alert",
        action="store_true",
        help="Exit with status 2 when any WARNING or ERROR is reported",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    try:
        settings = load_settings(args.config)
    except ValueError as exc:
        print(f"::error ::{exc}", file=sys.stderr)
        return 1
    setup_logging(args.verbose or settings.log_level)

    try:
        source = CollectedTelemetrySource.from_file(args.collected)
        window = source.window()
        definition_set = load_definitions(args.definitions)
    except (QueryError, DefinitionError) as exc:
        print(f"::error ::{exc}", file=sys.stderr)
        return 1

    logger.info(
        "System %s: %d probes, %ss step, ending %s",
        source.system_name or "?",
        window.probes,
        window.step_seconds,
        format_timestamp(window.end.timestamp()),
    )
    evaluator = Evaluator(source, window, verbose=bool(args.verbose), workers=settings.workers)
    with ReportWriter(args.output_prefix or settings.output_prefix) as writer:
        summary = evaluator.run(definition_set, writer)
        write_summary(summary, writer)
    print(f"Saved results in {writer.log_path}, {writer.json_path} and {writer.pretty_path}")

    if summary.alert_count and args.fail_on_alert:
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
