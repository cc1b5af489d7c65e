"""Diagnostic channel for the implementor registry.

Collects the non-fatal failures of a page view (dropped shards, failing
consumer callbacks, unreadable shard files) as structured events. Events are
kept in memory and, when a directory is given, also appended as
newline-delimited JSON to daily log files.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

MALFORMED_SHARD = "MALFORMED_SHARD"
CONSUMER_CALLBACK_FAILURE = "CONSUMER_CALLBACK_FAILURE"
SHARD_LOAD_FAILED = "SHARD_LOAD_FAILED"


@dataclass
class DiagnosticEvent:
    """A single diagnostic event."""

    id: str
    timestamp: str
    code: str
    message: str
    library_id: str = ""
    trait_id: str = ""
    details: dict[str, Any] = field(default_factory=dict)


class DiagnosticLog:
    """In-memory diagnostic log with optional JSONL persistence.

    When ``base_dir`` is set, every event is also written to
    ``<base_dir>/YYYY-MM-DD.jsonl``.
    """

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self._events: list[DiagnosticEvent] = []
        self._base_dir = Path(base_dir) if base_dir else None
        if self._base_dir is not None:
            self._base_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _log_file_for_date(self, dt: datetime) -> Path:
        return self._base_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def _persist(self, event: DiagnosticEvent) -> None:
        log_file = self._log_file_for_date(datetime.now(timezone.utc))
        try:
            with log_file.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(asdict(event), default=str) + "\n")
        except OSError as e:
            logger.error("Could not persist diagnostic %s to %s: %s", event.id, log_file, e)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def record(
        self,
        code: str,
        message: str,
        library_id: str = "",
        trait_id: str = "",
        details: Optional[dict[str, Any]] = None,
    ) -> DiagnosticEvent:
        """Record a diagnostic event and return it."""
        event = DiagnosticEvent(
            id=uuid.uuid4().hex[:16],
            timestamp=datetime.now(timezone.utc).isoformat(),
            code=code,
            message=message,
            library_id=library_id,
            trait_id=trait_id,
            details=details or {},
        )
        self._events.append(event)
        logger.warning("[%s] %s", code, message)
        if self._base_dir is not None:
            self._persist(event)
        return event

    def events(
        self,
        *,
        code: Optional[str] = None,
        library_id: Optional[str] = None,
    ) -> list[DiagnosticEvent]:
        """Return recorded events, oldest first."""
        result = self._events
        if code:
            result = [e for e in result if e.code == code]
        if library_id is not None:
            result = [e for e in result if e.library_id == library_id]
        return list(result)

    def count(self, code: Optional[str] = None) -> int:
        return len(self.events(code=code))

    def clear(self) -> None:
        self._events.clear()

    def load_persisted(self) -> list[DiagnosticEvent]:
        """Read every persisted event back from the JSONL files."""
        if self._base_dir is None:
            return []
        entries: list[DiagnosticEvent] = []
        for path in sorted(self._base_dir.glob("*.jsonl")):
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning("Skipping unreadable diagnostics file %s: %s", path, e)
                continue
            for lineno, line in enumerate(text.splitlines(), start=1):
                if not line.strip():
                    continue
                try:
                    entries.append(DiagnosticEvent(**json.loads(line)))
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning("Skipping corrupt diagnostic at %s:%d: %s", path, lineno, e)
        return entries
