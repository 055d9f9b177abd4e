"""Optional validation diagnostics: structured reports and repair hints."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, ValidationError

from toolrack.schema import coerce_arguments


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    message: str
    type: str
    received: Any = None


class ValidationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    issue_count: int = 0
    issues: tuple[ValidationIssue, ...] = ()


class RepairHint(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    hint: str


class DiagnosticsResult(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    success: bool
    report: ValidationReport
    error: ValidationError | None = None


@runtime_checkable
class Diagnostics(Protocol):
    def safe_parse_with_report(self, schema: type[BaseModel], value: Any) -> DiagnosticsResult: ...

    def create_repair_hints(self, error: ValidationError, *, root_label: str) -> Sequence[RepairHint]: ...


class ValidationDiagnostics:
    """Default diagnostics built from pydantic's error list."""

    def safe_parse_with_report(self, schema: type[BaseModel], value: Any) -> DiagnosticsResult:
        try:
            schema.model_validate(coerce_arguments(value))
        except ValidationError as exc:
            issues = tuple(
                ValidationIssue(
                    path=_path(item.get("loc", ())),
                    message=item.get("msg", ""),
                    type=item.get("type", ""),
                    received=item.get("input"),
                )
                for item in exc.errors(include_url=False, include_context=False)
            )
            report = ValidationReport(valid=False, issue_count=len(issues), issues=issues)
            return DiagnosticsResult(success=False, report=report, error=exc)
        return DiagnosticsResult(success=True, report=ValidationReport(valid=True))

    def create_repair_hints(self, error: ValidationError, *, root_label: str) -> list[RepairHint]:
        hints: list[RepairHint] = []
        for item in error.errors(include_url=False, include_context=False):
            path = _path(item.get("loc", ()), root_label)
            kind = item.get("type", "")
            if kind == "missing":
                hint = f"Provide a value for {path}."
            elif kind == "extra_forbidden":
                hint = f"Remove {path}; it is not accepted."
            else:
                hint = f"Fix {path}: {item.get('msg', 'invalid value')}."
            hints.append(RepairHint(path=path, hint=hint))
        return hints


def _path(loc: Sequence[Any], root_label: str | None = None) -> str:
    parts = [str(piece) for piece in loc]
    if root_label:
        parts.insert(0, root_label)
    return ".".join(parts) or "(root)"


__all__ = [
    "Diagnostics",
    "DiagnosticsResult",
    "RepairHint",
    "ValidationDiagnostics",
    "ValidationIssue",
    "ValidationReport",
]
