"""Per-user analysis history, keyed by user id.

Writes are last-write-wins. When a path is configured the whole store is
rewritten as one JSON document after every change, off the caller's thread.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Any

from plantsense.analysis.models import AnalysisEvent, AnalysisResult

logger = logging.getLogger(__name__)


def event_to_dict(event: AnalysisEvent) -> dict[str, Any]:
    result = event.result
    return {
        "result": {
            "isHealthy": result.is_healthy,
            "issueName": result.issue_name,
            "description": result.description,
            "recommendations": list(result.recommendations),
        },
        "image": event.image,
        "timestamp": event.timestamp.isoformat(),
    }


def event_from_dict(data: dict[str, Any]) -> AnalysisEvent:
    result = data["result"]
    return AnalysisEvent(
        result=AnalysisResult(
            is_healthy=bool(result["isHealthy"]),
            issue_name=result["issueName"],
            description=result["description"],
            recommendations=tuple(result["recommendations"]),
        ),
        image=data["image"],
        timestamp=datetime.fromisoformat(data["timestamp"]),
    )


class HistoryStore:
    """In-memory history with optional JSON file persistence.

    ``record`` and ``clear`` only touch memory. When a path is configured they
    queue a rewrite of the file on a single background writer thread, so
    callers on the event loop never wait for disk I/O. Writes land in order;
    a rewrite that is still queued picks up later changes instead of
    queueing another one.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._events: dict[str, list[AnalysisEvent]] = {}
        self._executor: ThreadPoolExecutor | None = None
        self._pending: Future[None] | None = None
        self._save_queued = False
        if self._path is not None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="history-writer")
            if self._path.exists():
                self._load(self._path)

    def record(self, user_id: str, event: AnalysisEvent) -> None:
        """Append an event to the user's history."""
        with self._lock:
            self._events.setdefault(user_id, []).append(event)
            self._schedule_save()
        logger.debug("Recorded %s for user %s", event.result.issue_name, user_id)

    def get_history(self, user_id: str) -> list[AnalysisEvent]:
        """Return the user's events, newest first."""
        with self._lock:
            events = list(self._events.get(user_id, []))
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    def clear(self, user_id: str) -> None:
        with self._lock:
            removed = len(self._events.pop(user_id, []))
            self._schedule_save()
        logger.info("Cleared %d history entries for user %s", removed, user_id)

    def flush(self) -> None:
        """Block until every queued write has reached the file."""
        pending = self._pending
        if pending is not None:
            pending.result()

    def shutdown(self) -> None:
        """Finish queued writes and stop the writer thread."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    # -- Internal -----------------------------------------------------------

    def _load(self, path: Path) -> None:
        raw = json.loads(path.read_text(encoding="utf-8"))
        self._events = {user_id: [event_from_dict(item) for item in items] for user_id, items in raw.items()}
        logger.info("Loaded history for %d users from %s", len(self._events), path)

    def _schedule_save(self) -> None:
        # Caller holds self._lock.
        if self._executor is None or self._save_queued:
            return
        self._save_queued = True
        self._pending = self._executor.submit(self._persist)

    def _persist(self) -> None:
        with self._lock:
            self._save_queued = False
            payload = {user_id: [event_to_dict(e) for e in events] for user_id, events in self._events.items()}
        try:
            self._write(payload)
        except OSError:
            logger.exception("Failed to write history to %s", self._path)

    def _write(self, payload: dict[str, list[dict[str, Any]]]) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload), encoding="utf-8")
        tmp.replace(self._path)
