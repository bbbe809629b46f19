"""Narration subscriber that renders channel traffic as log lines."""

from __future__ import annotations

import logging
from typing import List, Optional

from dealflow.events.channel import ChannelMessage, ChannelMessageKind
from dealflow.events.models import EventType


class LoggingNarrator:
    """Turns deal events and tool activity into short progress messages."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.lines: List[str] = []

    def __call__(self, message: ChannelMessage) -> None:
        line = self.describe(message)
        if not line:
            return
        self.lines.append(line)
        self.logger.info(line, extra={"component": "Narrator", "deal_id": message.deal_id})

    @staticmethod
    def describe(message: ChannelMessage) -> Optional[str]:
        data = message.data
        if message.kind == ChannelMessageKind.TOOL_ACTIVITY:
            detail = f": {data.get('detail')}" if data.get("detail") else ""
            return f"{data.get('task_id')} used {data.get('tool')}{detail}"

        payload = data.get("payload", {})
        event_type = data.get("type")
        task_id = payload.get("task_id")
        if event_type == EventType.TASK_STARTED.value:
            return f"{task_id} started"
        if event_type == EventType.TASK_DONE.value:
            return f"{task_id} finished ({payload.get('status', 'done')})"
        if event_type == EventType.EVIDENCE_ADDED.value:
            return f"{len(payload.get('evidence', []))} evidence item(s) added"
        if event_type == EventType.DECISION_UPDATED.value:
            gate = payload.get("decision_gate", {})
            return f"decision: {gate.get('decision')}"
        if event_type == EventType.ERROR.value:
            return f"{payload.get('kind')} error in {task_id or 'run'}"
        return None
