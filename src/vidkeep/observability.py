"""JSONL event log: one file per day under the observability directory."""

import fcntl
import json
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from .config import default_data_dir

SUFFIX = "_events.jsonl"


class EventLog:
    """Appends sync and download events to <base_dir>/YYYY-MM-DD_events.jsonl.

    Appends hold an exclusive flock, so the daemon's worker threads and a
    concurrent CLI process never interleave partial lines.
    """

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = base_dir or default_data_dir() / "observability"
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, day: date) -> Path:
        return self.base_dir / f"{day.isoformat()}{SUFFIX}"

    def record(self, event: str, **fields: Any) -> None:
        """Append one event. Failures go to stderr and the event is dropped.

        Args:
            event: Event name (e.g., "sync.start", "download.error")
            **fields: Ids, counts and durations attached to the event
        """
        line = json.dumps(
            {"ts": datetime.now(timezone.utc).isoformat(), "event": event, **fields},
            default=str,
        )
        try:
            with open(self.path_for(date.today()), "a") as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                f.write(line + "\n")
        except OSError as e:
            print(f"[events] Dropped '{event}': {e}", file=sys.stderr)

    def prune(self, retention_days: int = 30) -> int:
        """Delete day files older than retention_days.

        Returns:
            Number of files deleted
        """
        cutoff = date.today() - timedelta(days=retention_days)
        pruned = 0
        for path in self.base_dir.glob(f"*{SUFFIX}"):
            try:
                day = date.fromisoformat(path.name[: -len(SUFFIX)])
            except ValueError:
                continue
            if day < cutoff:
                path.unlink(missing_ok=True)
                pruned += 1
        return pruned


_event_log: Optional[EventLog] = None


def configure(base_dir: Path) -> EventLog:
    """Point the module-level event log at base_dir."""
    global _event_log
    _event_log = EventLog(base_dir)
    return _event_log


def get_event_log() -> EventLog:
    global _event_log
    if _event_log is None:
        _event_log = EventLog()
    return _event_log


def log(event: str, **fields: Any) -> None:
    """Record an event on the module-level event log.

    Usage:
        from vidkeep.observability import log
        log("sync.complete", source_id=source_id, items_new=3)
    """
    try:
        event_log = get_event_log()
    except OSError as e:
        print(f"[events] Event log unavailable: {e}", file=sys.stderr)
        return
    event_log.record(event, **fields)
