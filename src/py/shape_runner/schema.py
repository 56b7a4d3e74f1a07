"""
Shape Runner — Type Model

A small recursive schema language shared by input and output shapes:
primitives (string, markdown, number, boolean), arrays and objects with
ordered, named fields. Nodes are immutable trees with no back-references.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

from .types import SchemaDefinitionError

PrimitiveKind = Literal["string", "markdown", "number", "boolean"]

_PRIMITIVE_KINDS: frozenset[str] = frozenset({"string", "markdown", "number", "boolean"})


@dataclass(frozen=True)
class Primitive:
    """A leaf value. ``markdown`` validates like ``string``."""

    kind: PrimitiveKind


@dataclass(frozen=True)
class Array:
    element: TypeNode


@dataclass(frozen=True)
class Field:
    """One named field of an object node."""

    name: str
    type: TypeNode
    required: bool = True
    description: str | None = None


@dataclass(frozen=True)
class Object:
    fields: tuple[Field, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Accept any iterable of fields but store an immutable tuple.
        object.__setattr__(self, "fields", tuple(self.fields))

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


TypeNode = Union[Primitive, Array, Object]

STRING = Primitive("string")
MARKDOWN = Primitive("markdown")
NUMBER = Primitive("number")
BOOLEAN = Primitive("boolean")


def type_name(node: TypeNode) -> str:
    """Short kind label used in violation messages."""
    if isinstance(node, Primitive):
        # Markdown is a string on the wire.
        return "string" if node.kind == "markdown" else node.kind
    if isinstance(node, Array):
        return "array"
    return "object"


# --- Configuration-time checks ---


def check_type(node: TypeNode) -> None:
    """
    Reject malformed type trees.

    Raises SchemaDefinitionError for duplicate or empty field names, unknown
    primitive kinds, foreign node types, or a node that contains itself.
    """
    _check(node, "$", active=set())


def _check(node: object, where: str, active: set[int]) -> None:
    if id(node) in active:
        raise SchemaDefinitionError(f"type at {where} contains itself")

    if isinstance(node, Primitive):
        if node.kind not in _PRIMITIVE_KINDS:
            raise SchemaDefinitionError(f"unknown primitive kind {node.kind!r} at {where}")
        return

    if isinstance(node, Array):
        active.add(id(node))
        _check(node.element, f"{where}[]", active)
        active.discard(id(node))
        return

    if isinstance(node, Object):
        active.add(id(node))
        seen: set[str] = set()
        for f in node.fields:
            if not isinstance(f, Field):
                raise SchemaDefinitionError(f"object at {where} has a non-Field entry: {f!r}")
            if not f.name:
                raise SchemaDefinitionError(f"object at {where} has a field with an empty name")
            if f.name in seen:
                raise SchemaDefinitionError(f"duplicate field {f.name!r} in object at {where}")
            seen.add(f.name)
            _check(f.type, f"{where}.{f.name}", active)
        active.discard(id(node))
        return

    raise SchemaDefinitionError(f"unsupported type node at {where}: {node!r}")


# --- Rendering ---


def _label(node: Primitive) -> str:
    return "string (markdown)" if node.kind == "markdown" else node.kind


def describe(node: TypeNode, indent: int = 0) -> str:
    """
    Deterministic, human-readable description of a type tree.

    Every object field is listed with its kind and whether it is required;
    nested arrays and objects are indented below their parent line.
    """
    return "\n".join(_describe_lines(node, indent))


def _describe_lines(node: TypeNode, indent: int) -> list[str]:
    pad = " " * indent

    if isinstance(node, Primitive):
        return [f"{pad}- {_label(node)}"]

    if isinstance(node, Array):
        return [f"{pad}- array of:", *_describe_lines(node.element, indent + 2)]

    lines = [f"{pad}- object with fields:"]
    for f in node.fields:
        lines.extend(_describe_field(f, indent + 2))
    return lines


def _describe_field(f: Field, indent: int) -> list[str]:
    pad = " " * indent
    req = "required" if f.required else "optional"
    desc = f" {f.description}" if f.description else ""
    node = f.type

    if isinstance(node, Primitive):
        return [f"{pad}- {f.name}: {_label(node)}, {req}.{desc}".rstrip()]

    if isinstance(node, Array):
        head = f"{pad}- {f.name}: array, {req}.{desc}".rstrip()
        return [f"{head} Each item:", *_describe_lines(node.element, indent + 4)]

    head = f"{pad}- {f.name}: object, {req}.{desc}".rstrip()
    return [f"{head} Fields:", *(line for sub in node.fields for line in _describe_field(sub, indent + 4))]
