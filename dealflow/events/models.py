"""Deal event models for the append-only per-deal history."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Supported deal event types."""

    TASK_STARTED = "TASK_STARTED"
    MESSAGE_SENT = "MESSAGE_SENT"
    TASK_DONE = "TASK_DONE"
    EVIDENCE_ADDED = "EVIDENCE_ADDED"
    STATE_PATCH = "STATE_PATCH"
    DECISION_UPDATED = "DECISION_UPDATED"
    ERROR = "ERROR"


class FailureKind(str, Enum):
    """Failure taxonomy carried on ERROR events."""

    VALIDATION = "validation"
    COLLABORATOR = "collaborator"
    WORKER = "worker"
    FATAL = "fatal"


ORCHESTRATOR_TASK_ID = "orchestrator"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_event_id() -> str:
    return uuid.uuid4().hex


class DealEvent(BaseModel):
    """One immutable entry in a deal's event log."""

    event_id: str = Field(default_factory=new_event_id)
    ts: str = Field(default_factory=utc_now_iso)
    deal_id: str
    run_id: Optional[str] = None
    type: EventType
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def task_id(self) -> Optional[str]:
        value = self.payload.get("task_id")
        return str(value) if value is not None else None


def task_started(deal_id: str, run_id: str, task_id: str, role: str,
                 specialization: Optional[str] = None, **extra: Any) -> DealEvent:
    payload: Dict[str, Any] = {"task_id": task_id, "role": role}
    if specialization:
        payload["specialization"] = specialization
    payload.update(extra)
    return DealEvent(deal_id=deal_id, run_id=run_id, type=EventType.TASK_STARTED, payload=payload)


def task_done(deal_id: str, run_id: str, task_id: str, status: str, **extra: Any) -> DealEvent:
    payload: Dict[str, Any] = {"task_id": task_id, "status": status}
    payload.update(extra)
    return DealEvent(deal_id=deal_id, run_id=run_id, type=EventType.TASK_DONE, payload=payload)


def error_event(deal_id: str, run_id: Optional[str], kind: FailureKind, message: str,
                task_id: Optional[str] = None, **extra: Any) -> DealEvent:
    payload: Dict[str, Any] = {"kind": kind.value, "message": message}
    if task_id:
        payload["task_id"] = task_id
    payload.update(extra)
    return DealEvent(deal_id=deal_id, run_id=run_id, type=EventType.ERROR, payload=payload)
