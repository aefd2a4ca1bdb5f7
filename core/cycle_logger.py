"""JSONL audit trail for poll cycles.

Every cycle, successful or not, becomes one ``CycleRecord`` line so operators
can see why an entity's date did or did not move. Records are redacted before
they hit disk and the file is rotated by size.
"""

from __future__ import annotations

import json
import re
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, IO, Optional, Pattern

_KNOWN_PATTERNS: Dict[str, Pattern[str]] = {
    "api_key": re.compile(r"\bsk-[A-Za-z0-9_-]{8,}\b"),
    "bearer": re.compile(r"\bBearer\s+[A-Za-z0-9._-]+", re.IGNORECASE),
    "email": re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE),
}
_REDACT_FIELDS = {"text", "detail"}


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


@dataclass
class CycleRecord:
    """Outcome of a single fetch/detect/extract/commit pass."""

    timestamp: str
    identity: str
    status: str
    changed: bool = False
    text: str | None = None
    resolved_date: str | None = None
    day_count: int | None = None
    weekday: str | None = None
    detail: str | None = None
    latency_ms: int | None = None

    @classmethod
    def new(
        cls,
        *,
        identity: str,
        status: str,
        changed: bool = False,
        text: str | None = None,
        resolved_date: str | None = None,
        day_count: int | None = None,
        weekday: str | None = None,
        detail: str | None = None,
        latency_ms: int | None = None,
    ) -> "CycleRecord":
        return cls(
            timestamp=_utc_now(),
            identity=identity,
            status=status,
            changed=changed,
            text=text,
            resolved_date=resolved_date,
            day_count=day_count,
            weekday=weekday,
            detail=detail,
            latency_ms=latency_ms,
        )


class CycleLogger:
    """Appends ``CycleRecord`` rows to a JSONL file with rotation."""

    def __init__(
        self,
        *,
        path: Path,
        enabled: bool = True,
        redact: bool = True,
        max_bytes: int = 0,
        backup_count: int = 0,
    ) -> None:
        self._path = path
        self._enabled = enabled
        self._redact = redact
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def path(self) -> Path:
        return self._path

    def log_cycle(self, record: CycleRecord) -> None:
        if not self._enabled:
            return
        self._append_json_line(asdict(record))

    def _append_json_line(self, payload: Dict[str, Any]) -> None:
        """Scrub, rotate if needed, then append one JSON line.

        Cycles for different entities run on different threads, so the write
        and rotation happen under a single lock.
        """

        prepared = self._prepare_payload(payload)
        line = json.dumps(prepared, ensure_ascii=False)
        encoded = line.encode("utf-8")
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._rotate_if_needed(len(encoded) + 1)
            with self._open_file(self._path) as handle:
                handle.write(line)
                handle.write("\n")

    @staticmethod
    def _open_file(path: Path) -> IO[str]:
        return path.open("a", encoding="utf-8")

    def _prepare_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self._redact:
            return payload
        return {
            key: self._scrub_string(value) if key in _REDACT_FIELDS and isinstance(value, str) else value
            for key, value in payload.items()
        }

    @staticmethod
    def _scrub_string(value: str) -> str:
        sanitized = value
        for key, pattern in _KNOWN_PATTERNS.items():
            sanitized = pattern.sub(f"[REDACTED_{key.upper()}]", sanitized)
        return sanitized

    def _rotate_if_needed(self, incoming_bytes: int) -> None:
        path = self._path
        if self._max_bytes <= 0 or not path.exists():
            return

        if path.stat().st_size + incoming_bytes <= self._max_bytes:
            return

        if self._backup_count <= 0:
            path.unlink()
            return

        for index in range(self._backup_count - 1, 0, -1):
            src = Path(f"{path}.{index}")
            dst = Path(f"{path}.{index + 1}")
            if src.exists():
                src.replace(dst)

        rotated = Path(f"{path}.1")
        if rotated.exists():
            rotated.unlink()
        path.replace(rotated)


def read_cycle_records(
    path: Path,
    *,
    identity: Optional[str] = None,
    limit: Optional[int] = None,
    backups: int = 0,
) -> list[Dict[str, Any]]:
    """Return parsed cycle rows, newest last, skipping malformed lines.

    ``identity`` filters before ``limit`` is applied, so the newest ``limit``
    rows of that entity come back. ``backups`` also reads up to that many
    rotated files (``path.N`` down to ``path.1``) ahead of the live file.
    """

    if limit is not None and limit <= 0:
        return []
    rows: Deque[Dict[str, Any]] = deque(maxlen=limit)
    sources = [Path(f"{path}.{index}") for index in range(backups, 0, -1)] + [path]
    for source in sources:
        if not source.exists():
            continue
        with source.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    row = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if identity is not None and row.get("identity") != identity:
                    continue
                rows.append(row)
    return list(rows)


__all__ = ["CycleLogger", "CycleRecord", "read_cycle_records"]
