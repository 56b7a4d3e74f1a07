"""
Shape Runner — Type Definitions

Value objects and errors shared by the validator, extractor, prompt builder
and retry orchestrator. No external dependencies.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Sequence

# A path segment is either an object field name or an array index.
PathSegment = str | int


class ViolationKind(enum.Enum):
    MISSING_FIELD = "MissingField"
    TYPE_MISMATCH = "TypeMismatch"
    UNPARSABLE_VALUE = "UnparsableValue"


def format_path(path: Sequence[PathSegment]) -> str:
    """Render a path in root-relative notation, e.g. ``$.risks[0]``."""
    parts = ["$"]
    for segment in path:
        if isinstance(segment, int):
            parts.append(f"[{segment}]")
        else:
            parts.append(f".{segment}")
    return "".join(parts)


@dataclass(frozen=True)
class Violation:
    """One concrete mismatch between a value and a schema node."""

    path: tuple[PathSegment, ...]
    kind: ViolationKind
    message: str
    expected: str | None = None
    found: str | None = None

    @property
    def location(self) -> str:
        return format_path(self.path)

    def __str__(self) -> str:
        return f"{self.kind.value} at {self.location}: {self.message}"


def format_violations(violations: Sequence[Violation]) -> str:
    """One line per violation, in the order they were reported."""
    return "\n".join(f"- {v}" for v in violations)


# --- Run state ---


class RunState(enum.Enum):
    START = "START"
    INVOKING = "INVOKING"
    VALIDATING = "VALIDATING"
    ACCEPTED = "ACCEPTED"
    EXHAUSTED = "EXHAUSTED"


@dataclass(frozen=True)
class Attempt:
    """One invoke -> extract -> validate cycle."""

    index: int
    raw_text: str
    value: Any = None
    violations: tuple[Violation, ...] = ()

    @property
    def accepted(self) -> bool:
        return not self.violations


@dataclass(frozen=True)
class RunOutcome:
    """Terminal value of one request."""

    accepted: bool
    attempts: tuple[Attempt, ...]

    # The accepted output value (None when the run was exhausted).
    value: Any = None

    # Violations of the last attempt (empty when accepted).
    violations: tuple[Violation, ...] = field(default_factory=tuple)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def unwrap(self) -> Any:
        """Return the accepted value or raise ValidationExhaustedError."""
        if not self.accepted:
            raise ValidationExhaustedError(self)
        return self.value


# --- Errors ---


class ShapeRunnerError(Exception):
    """Base class for every error raised by shape_runner."""


class SchemaDefinitionError(ShapeRunnerError):
    """A type node or shape definition is malformed. Raised at registration."""


class UnknownShapeError(ShapeRunnerError):
    """No shape is registered under the requested id."""

    def __init__(self, shape_id: str) -> None:
        super().__init__(f"unknown shape: {shape_id!r}")
        self.shape_id = shape_id


class InputValidationError(ShapeRunnerError):
    """The request input does not match the shape's input type. Never retried."""

    def __init__(self, violations: Sequence[Violation]) -> None:
        self.violations = tuple(violations)
        super().__init__(
            f"input does not match the declared input type "
            f"({len(self.violations)} violation(s)):\n{format_violations(self.violations)}"
        )


class ValidationExhaustedError(ShapeRunnerError):
    """Every output attempt failed validation."""

    def __init__(self, outcome: RunOutcome) -> None:
        self.outcome = outcome
        super().__init__(
            f"output failed validation after {outcome.attempt_count} attempt(s); "
            f"unresolved violations:\n{format_violations(outcome.violations)}"
        )


class TransportErrorKind(enum.Enum):
    TIMEOUT = "Timeout"
    CONNECTION_REFUSED = "ConnectionRefused"
    NON_SUCCESS_STATUS = "NonSuccessStatus"
    MALFORMED_RESPONSE = "MalformedResponseEnvelope"


class TransportError(ShapeRunnerError):
    """A single model invocation failed to produce any text."""

    def __init__(
        self,
        kind: TransportErrorKind,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.status_code = status_code


class TransportExhaustedError(ShapeRunnerError):
    """The transport retry budget ran out for one invocation."""

    def __init__(self, errors: Sequence[TransportError]) -> None:
        self.errors = tuple(errors)
        summary = "; ".join(f"try {i + 1}: {e}" for i, e in enumerate(self.errors))
        super().__init__(
            f"model invocation failed after {len(self.errors)} tr{'y' if len(self.errors) == 1 else 'ies'}: {summary}"
        )


class CodecError(ShapeRunnerError):
    """A payload could not be encoded or decoded."""
