"""Append-only per-deal event store backed by JSONL files."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from dealflow.events.models import DealEvent, EventType
from exceptions import StorageError

logger = logging.getLogger(__name__)

EVENTS_FILENAME = "events.jsonl"

EventSubscriber = Callable[[DealEvent], None]


class EventStore:
    """Read/write ordered JSONL events for each deal.

    ``append`` is the only write. A line becomes visible to ``read`` only once
    its terminating newline is on disk, so a crash mid-write never surfaces a
    partial event.
    """

    def __init__(self, deals_dir: Path, fsync: bool = True):
        self.deals_dir = Path(deals_dir)
        self.fsync = fsync
        self._lock = threading.Lock()
        self._subscribers: List[EventSubscriber] = []

    def events_file(self, deal_id: str) -> Path:
        return self.deals_dir / deal_id / EVENTS_FILENAME

    @staticmethod
    def _drop_torn_tail(path: Path) -> None:
        """Cut an unterminated last line left by an interrupted append."""
        if not path.exists():
            return
        with open(path, "rb+") as file_obj:
            file_obj.seek(0, os.SEEK_END)
            size = file_obj.tell()
            if size == 0:
                return
            file_obj.seek(size - 1)
            if file_obj.read(1) == b"\n":
                return
            file_obj.seek(0)
            keep = file_obj.read().rfind(b"\n") + 1
            file_obj.truncate(keep)
        logger.warning(
            "Dropped partial trailing event line",
            extra={"component": "EventStore", "data": {"path": str(path), "bytes": size - keep}},
        )

    def subscribe(self, callback: EventSubscriber) -> None:
        """Register a live subscriber called after each durable append."""
        self._subscribers.append(callback)

    def append(self, event: DealEvent) -> DealEvent:
        """Append one event to the deal's log."""
        line = json.dumps(event.model_dump(mode="json"), ensure_ascii=False) + "\n"
        path = self.events_file(event.deal_id)
        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                self._drop_torn_tail(path)
                with open(path, "a", encoding="utf-8") as file_obj:
                    file_obj.write(line)
                    file_obj.flush()
                    if self.fsync:
                        os.fsync(file_obj.fileno())
            except OSError as exc:
                raise StorageError(f"Failed to append event to {path}: {exc}") from exc

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as exc:
                # Subscribers are observers; the event is already durable.
                logger.warning(
                    "Event subscriber failed",
                    extra={"component": "EventStore", "data": {"error": str(exc), "type": event.type.value}},
                )
        return event

    def append_many(self, events: List[DealEvent]) -> None:
        for event in events:
            self.append(event)

    def read(self, deal_id: str, run_id: Optional[str] = None) -> List[DealEvent]:
        """Read and parse all complete events in insertion order."""
        path = self.events_file(deal_id)
        if not path.exists():
            return []

        events: List[DealEvent] = []
        with open(path, "r", encoding="utf-8") as file_obj:
            for line_no, line in enumerate(file_obj, start=1):
                if not line.endswith("\n"):
                    # Torn tail from an interrupted append
                    logger.warning(
                        "Skipping partial trailing event line",
                        extra={"component": "EventStore", "deal_id": deal_id, "data": {"line": line_no}},
                    )
                    break
                payload = line.strip()
                if not payload:
                    continue
                try:
                    event = DealEvent.model_validate_json(payload)
                except ValidationError as exc:
                    logger.warning(
                        "Skipping unreadable event line",
                        extra={
                            "component": "EventStore",
                            "deal_id": deal_id,
                            "data": {"line": line_no, "errors": exc.error_count()},
                        },
                    )
                    continue
                if run_id is None or event.run_id == run_id:
                    events.append(event)
        return events

    def read_by_type(self, deal_id: str, event_type: EventType) -> List[DealEvent]:
        """Return events matching the given type."""
        return [event for event in self.read(deal_id) if event.type == event_type]

    def count(self, deal_id: str) -> int:
        """Return total number of events for a deal."""
        return len(self.read(deal_id))

    def counts_by_type(self, deal_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for event in self.read(deal_id):
            counts[event.type.value] = counts.get(event.type.value, 0) + 1
        return counts
