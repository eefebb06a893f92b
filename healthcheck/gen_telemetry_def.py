#!/usr/bin/env python3
"""Generate the telemetry collection list from an alert definitions file.

Every definition that names a ``TelemetryID`` contributes one collection entry;
when several alerts share a TelemetryID only the first is kept.
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

from healthcheck.definitions import DefinitionError, derive_telemetry_definitions, load_definitions
from healthcheck.report import rotate

_DEFAULT_PREFIX = "hcpcs_telemetry_def"


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate telemetry definitions from alert definitions")
    parser.add_argument("definitions", type=Path, help="Alert definitions file (JSON or YAML)")
    parser.add_argument(
        "prefix",
        nargs="?",
        default=_DEFAULT_PREFIX,
        help=f"Prefix for the output telemetry definition file (default: {_DEFAULT_PREFIX})",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    try:
        definition_set = load_definitions(args.definitions)
    except DefinitionError as exc:
        print(f"::error ::{exc}", file=sys.stderr)
        return 1

    entries = derive_telemetry_definitions(definition_set.definitions)
    output = Path(f"{args.prefix}_autogen.json")
    rotate(output)
    output.write_text(json.dumps(entries, indent=2) + "\n", encoding="utf-8")
    print(f"Wrote {len(entries)} telemetry definitions to {output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
