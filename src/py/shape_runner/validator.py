"""
Shape Runner — Structural Validator

Walks a decoded value against a TypeNode and reports every violation it can
reach, depth-first in field-declaration order. Pure: no I/O, no shared state.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .schema import Array, Object, Primitive, TypeNode, type_name
from .types import PathSegment, Violation, ViolationKind, format_path, format_violations

__all__ = ["validate", "runtime_kind", "format_violations"]


def runtime_kind(value: Any) -> str:
    """Name the JSON kind of a decoded Python value."""
    if value is None:
        return "null"
    # bool is a subclass of int, so it must be checked first.
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def validate(value: Any, node: TypeNode) -> list[Violation]:
    """
    Check ``value`` against ``node``.

    Returns all violations found; an empty list means the value is accepted.
    Keys present in the value but not declared by an object node are ignored.
    """
    violations: list[Violation] = []
    _validate(value, node, (), violations)
    return violations


def _mismatch(path: tuple[PathSegment, ...], expected: str, found: str) -> Violation:
    return Violation(
        path=path,
        kind=ViolationKind.TYPE_MISMATCH,
        message=f"expected {expected}, found {found}",
        expected=expected,
        found=found,
    )


def _validate(
    value: Any,
    node: TypeNode,
    path: tuple[PathSegment, ...],
    out: list[Violation],
) -> None:
    found = runtime_kind(value)

    if isinstance(node, Primitive):
        expected = type_name(node)
        if found != expected:
            out.append(_mismatch(path, expected, found))
        return

    if isinstance(node, Array):
        if found != "array":
            out.append(_mismatch(path, "array", found))
            return
        for index, item in enumerate(value):
            _validate(item, node.element, (*path, index), out)
        return

    if isinstance(node, Object):
        if found != "object":
            out.append(_mismatch(path, "object", found))
            return
        for f in node.fields:
            field_path = (*path, f.name)
            if f.name not in value:
                if f.required:
                    out.append(
                        Violation(
                            path=field_path,
                            kind=ViolationKind.MISSING_FIELD,
                            message=f"missing required field {f.name!r} ({type_name(f.type)})",
                            expected=type_name(f.type),
                        )
                    )
                continue
            field_value = value[f.name]
            if field_value is None and not f.required:
                continue
            _validate(field_value, f.type, field_path, out)
        return

    raise TypeError(f"unsupported type node at {format_path(path)}: {node!r}")
