"""
Deal and run storage.
Handles id generation, deal inputs, run records, event logs and run locks.

Layout::

    <deals_directory>/<deal_id>/deal.json
    <deals_directory>/<deal_id>/events.jsonl
    <deals_directory>/<deal_id>/run.lock
    <deals_directory>/<deal_id>/runs/<run_id>.json
"""
import json
import os
import re
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from dealflow.events.event_log import EventStore
from dealflow.orchestration.lock import DEFAULT_TTL_SECONDS, RunLock
from dealflow.state.models import DealInput, RunOutcome, RunRecord
from exceptions import DealNotFoundError, InputError, RunNotFoundError, StorageError
from logging_config import log_debug


def _write_json_atomic(path: Path, data: Dict[str, Any]) -> None:
    """Write JSON so readers never observe a half-written file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise StorageError(f"Failed to write {path}: {e}") from e


class RunManager:
    """Manages deal storage, run records and per-deal locks."""

    def __init__(self, deals_directory: str = "data/deals", lock_ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 fsync_events: bool = True):
        """
        Initialize run manager.

        Args:
            deals_directory: Directory holding one sub-directory per deal
            lock_ttl_seconds: Age after which an abandoned run lock may be taken over
            fsync_events: Whether event appends are fsynced
        """
        self.deals_directory = Path(deals_directory)
        self.deals_directory.mkdir(parents=True, exist_ok=True)
        self.lock_ttl_seconds = lock_ttl_seconds
        self.events = EventStore(self.deals_directory, fsync=fsync_events)
        self.logger = None

    def set_logger(self, logger):
        """Set logger for this run manager instance."""
        self.logger = logger

    # ── ids ──────────────────────────────────────────────────────────

    @staticmethod
    def generate_deal_id(name: str) -> str:
        slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:40] or "deal"
        return f"{slug}-{uuid.uuid4().hex[:8]}"

    def generate_run_id(self) -> str:
        """Timestamp plus short uuid, readable and unique."""
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        return f"{timestamp}_{uuid.uuid4().hex[:8]}"

    # ── deals ────────────────────────────────────────────────────────

    def deal_dir(self, deal_id: str) -> Path:
        if not deal_id or "/" in deal_id or deal_id.startswith("."):
            raise InputError(f"Invalid deal id '{deal_id}'")
        return self.deals_directory / deal_id

    def create_deal(self, deal: DealInput, deal_id: Optional[str] = None) -> str:
        deal_id = deal_id or self.generate_deal_id(deal.name)
        deal_file = self.deal_dir(deal_id) / "deal.json"
        if deal_file.exists():
            raise InputError(f"Deal '{deal_id}' already exists")
        _write_json_atomic(deal_file, {
            "deal_id": deal_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "deal": deal.model_dump(mode="json", exclude_none=True),
        })

        if self.logger:
            log_debug(self.logger, f"Created deal {deal_id}", "RunManager", {
                "deal_id": deal_id,
                "firm_type": deal.firm_type.value,
            })
        return deal_id

    def load_deal(self, deal_id: str) -> DealInput:
        deal_file = self.deal_dir(deal_id) / "deal.json"
        if not deal_file.exists():
            raise DealNotFoundError(f"Deal '{deal_id}' not found")
        with open(deal_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
        try:
            return DealInput.model_validate(data["deal"])
        except (KeyError, ValidationError) as e:
            raise StorageError(f"Corrupt deal record {deal_file}: {e}") from e

    def list_deals(self) -> List[str]:
        return sorted(d.name for d in self.deals_directory.iterdir() if (d / "deal.json").exists())

    # ── runs ─────────────────────────────────────────────────────────

    def _run_file(self, deal_id: str, run_id: str) -> Path:
        return self.deal_dir(deal_id) / "runs" / f"{run_id}.json"

    def create_run(self, deal_id: str) -> RunRecord:
        self.load_deal(deal_id)
        record = RunRecord(
            run_id=self.generate_run_id(),
            deal_id=deal_id,
            started_at=datetime.now(timezone.utc).isoformat(),
        )
        _write_json_atomic(self._run_file(deal_id, record.run_id), record.model_dump(mode="json"))

        if self.logger:
            log_debug(self.logger, f"Created run {record.run_id}", "RunManager", {
                "deal_id": deal_id,
                "run_id": record.run_id,
            })
        return record

    def load_run(self, deal_id: str, run_id: str) -> RunRecord:
        run_file = self._run_file(deal_id, run_id)
        if not run_file.exists():
            raise RunNotFoundError(f"Run '{run_id}' not found for deal '{deal_id}'")
        with open(run_file, 'r', encoding='utf-8') as f:
            return RunRecord.model_validate(json.load(f))

    def list_runs(self, deal_id: str) -> List[RunRecord]:
        self.load_deal(deal_id)
        runs_dir = self.deal_dir(deal_id) / "runs"
        if not runs_dir.exists():
            return []
        records = []
        for run_file in runs_dir.glob("*.json"):
            with open(run_file, 'r', encoding='utf-8') as f:
                records.append(RunRecord.model_validate(json.load(f)))
        return sorted(records, key=lambda record: (record.started_at, record.run_id))

    def latest_run(self, deal_id: str) -> Optional[RunRecord]:
        runs = self.list_runs(deal_id)
        return runs[-1] if runs else None

    def seal_run(self, deal_id: str, run_id: str, outcome: RunOutcome) -> RunRecord:
        """Seal a run with its outcome. A sealed record is never rewritten."""
        record = self.load_run(deal_id, run_id)
        if record.sealed:
            return record
        sealed = record.model_copy(update={
            "sealed": True,
            "completed_at": datetime.now(timezone.utc).isoformat(),
            "outcome": outcome,
        })
        _write_json_atomic(self._run_file(deal_id, run_id), sealed.model_dump(mode="json"))

        if self.logger:
            log_debug(self.logger, f"Sealed run {run_id}", "RunManager", {
                "deal_id": deal_id,
                "run_id": run_id,
                "decision": outcome.decision.value if outcome.decision else None,
                "degraded": outcome.degraded,
            })
        return sealed

    # ── locks ────────────────────────────────────────────────────────

    def lock_for(self, deal_id: str) -> RunLock:
        return RunLock(self.deal_dir(deal_id), deal_id, ttl_seconds=self.lock_ttl_seconds)
