"""Validate decoded JSON against the models agentboard serves.

`validate` never raises on bad input and never hands back a partially built
object: the caller gets either `Ok(value)` or `Fail(reason, issues)`. Task and
repository metadata feed the board's counts and grouping, so a `Fail` there is
surfaced to the client through `SchemaViolation` rather than papered over.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

from pydantic import BaseModel, ValidationError

M = TypeVar("M", bound=BaseModel)


class SchemaViolation(Exception):
    """A metadata file decoded but does not match its declared shape."""

    def __init__(self, shape: str, reason: str, issues: list[dict[str, Any]] | None = None):
        super().__init__(f"{shape}: {reason}")
        self.shape = shape
        self.reason = reason
        self.issues = issues or []

    def to_detail(self) -> dict[str, Any]:
        return {
            "error": "schema_violation",
            "shape": self.shape,
            "message": self.reason,
            "issues": self.issues,
        }


@dataclass(frozen=True)
class Ok(Generic[M]):
    value: M

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> M:
        return self.value


@dataclass(frozen=True)
class Fail:
    shape: str
    reason: str
    issues: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        raise SchemaViolation(self.shape, self.reason, self.issues)


ValidationResult = Union[Ok[M], Fail]


def _issue_dicts(exc: ValidationError) -> list[dict[str, Any]]:
    issues = []
    for err in exc.errors():
        issues.append(
            {
                "loc": ".".join(str(part) for part in err.get("loc", ())),
                "msg": str(err.get("msg", "")),
                "type": str(err.get("type", "")),
            }
        )
    return issues


def validate(raw: Any, shape: type[M]) -> ValidationResult[M]:
    """Validate already-decoded JSON against `shape`."""
    try:
        return Ok(shape.model_validate(raw))
    except ValidationError as exc:
        issues = _issue_dicts(exc)
        return Fail(shape.__name__, f"{len(issues)} validation error(s)", issues)


def decode_and_validate(text: str, shape: type[M]) -> ValidationResult[M]:
    """Decode a JSON document, then validate it. Bad JSON is a `Fail` as well."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        return Fail(shape.__name__, f"invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})")
    except (ValueError, RecursionError) as exc:
        # e.g. an integer literal past the interpreter's digit limit
        return Fail(shape.__name__, f"invalid JSON: {exc}")
    return validate(raw, shape)
