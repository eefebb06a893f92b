"""Report files written by a run.

``<prefix>.log`` holds the human-readable lines, ``<prefix>.json`` one JSON
object per record and ``<prefix>_pretty.json`` the same records indented. A
file left over from a previous run is moved to ``<name>.bak`` first.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional, TextIO

from healthcheck.emitter import EmittedLine


def rotate(path: Path) -> Optional[Path]:
    if not path.exists():
        return None
    backup = path.with_name(path.name + ".bak")
    path.replace(backup)
    return backup


class ReportWriter:
    def __init__(self, prefix: str, echo: bool = True) -> None:
        self.prefix = prefix
        self.log_path = Path(f"{prefix}.log")
        self.json_path = Path(f"{prefix}.json")
        self.pretty_path = Path(f"{prefix}_pretty.json")
        self._echo = echo
        self._records: List[Dict[str, object]] = []
        self._log: Optional[TextIO] = None
        self._json: Optional[TextIO] = None

    def __enter__(self) -> "ReportWriter":
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def open(self) -> None:
        for path in (self.log_path, self.json_path, self.pretty_path):
            path.parent.mkdir(parents=True, exist_ok=True)
            rotate(path)
        self._log = self.log_path.open("w", encoding="utf-8")
        self._json = self.json_path.open("w", encoding="utf-8")

    def line(self, text: str) -> None:
        if self._log is not None:
            self._log.write(text + "\n")
            self._log.flush()
        if self._echo:
            print(text)

    def emit(self, emitted: EmittedLine) -> None:
        payload = emitted.record.to_dict()
        self._records.append(payload)
        if self._json is not None:
            self._json.write(json.dumps(payload) + "\n")
            self._json.flush()
        self.line(emitted.line)

    def close(self) -> None:
        if self._log is not None:
            self._log.close()
            self._log = None
        if self._json is not None:
            self._json.close()
            self._json = None
            self.pretty_path.write_text(json.dumps(self._records, indent=2) + "\n", encoding="utf-8")

    @property
    def records(self) -> List[Dict[str, object]]:
        return list(self._records)


class MemoryWriter:
    """Collects report output without touching the filesystem."""

    def __init__(self) -> None:
        self.lines: List[str] = []
        self.records: List[Dict[str, object]] = []

    def line(self, text: str) -> None:
        self.lines.append(text)

    def emit(self, emitted: EmittedLine) -> None:
        self.records.append(emitted.record.to_dict())
        self.lines.append(emitted.line)
