"""Contract validation helpers."""

from __future__ import annotations

import json
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dealflow.contracts.models import ContractName, SynthesisOutput
from dealflow.contracts.registry import get_coercer, get_contract_model

ROOT_PATH = "(root)"


class ValidationIssue(BaseModel):
    path: str
    message: str

    def render(self) -> str:
        return f"- {self.path}: {self.message}"


class ValidationResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    ok: bool
    data: Optional[BaseModel] = None
    issues: List[ValidationIssue] = Field(default_factory=list)
    raw: Any = None

    def render_issues(self) -> str:
        return "\n".join(issue.render() for issue in self.issues)


def _format_loc(loc: Iterable[Any]) -> str:
    parts = [str(part) for part in loc]
    return ".".join(parts) if parts else ROOT_PATH


def issues_from_error(exc: ValidationError) -> List[ValidationIssue]:
    return [ValidationIssue(path=_format_loc(err["loc"]), message=err["msg"]) for err in exc.errors()]


def _parse_raw(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


def validate_output(raw: Any, contract: ContractName,
                    known_evidence_ids: Optional[Iterable[str]] = None) -> ValidationResult:
    """Coerce and validate raw worker output against a contract.

    When ``known_evidence_ids`` is given, hypotheses citing evidence outside
    that set are reported as issues.
    """
    try:
        parsed = _parse_raw(raw)
    except json.JSONDecodeError as exc:
        return ValidationResult(
            ok=False,
            issues=[ValidationIssue(path=ROOT_PATH, message=f"output is not valid JSON ({exc.msg})")],
            raw=raw,
        )

    coerced = get_coercer(contract)(parsed)
    model_cls = get_contract_model(contract)
    try:
        data = model_cls.model_validate(coerced)
    except ValidationError as exc:
        return ValidationResult(ok=False, issues=issues_from_error(exc), raw=coerced)

    if known_evidence_ids is not None and isinstance(data, SynthesisOutput):
        known = set(known_evidence_ids)
        issues = []
        for index, hypothesis in enumerate(data.hypotheses):
            for evidence_id in hypothesis.support_evidence_ids:
                if evidence_id not in known:
                    issues.append(ValidationIssue(
                        path=f"hypotheses.{index}.support_evidence_ids",
                        message=f"unknown evidence id '{evidence_id}'",
                    ))
        if issues:
            return ValidationResult(ok=False, issues=issues, raw=coerced)

    return ValidationResult(ok=True, data=data, raw=coerced)


def validate_contract(contract: ContractName, content: Any) -> List[str]:
    """Validate contract content and return a flat list of error strings."""
    result = validate_output(content, contract)
    return [issue.render() for issue in result.issues]
