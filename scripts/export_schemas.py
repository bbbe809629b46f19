#!/usr/bin/env python3
"""Export JSON schemas for worker contracts, events and run state."""

from __future__ import annotations

import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from dealflow.contracts.registry import CONTRACT_MODELS
from dealflow.events.models import DealEvent
from dealflow.state.models import DealInput, RunRecord, RunState


def write_schema(path: Path, schema: dict) -> None:
    with open(path, "w", encoding="utf-8") as file_obj:
        json.dump(schema, file_obj, indent=2, ensure_ascii=False)


def main() -> int:
    target_dir = REPO_ROOT / "dealflow" / "contracts" / "schemas"
    target_dir.mkdir(parents=True, exist_ok=True)

    for contract, model_cls in CONTRACT_MODELS.items():
        write_schema(target_dir / f"{contract.value}.schema.json", model_cls.model_json_schema())

    for model_cls in (DealEvent, DealInput, RunState, RunRecord):
        write_schema(target_dir / f"{model_cls.__name__}.schema.json", model_cls.model_json_schema())

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
