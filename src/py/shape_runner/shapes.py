"""
Shape Runner — Shape Definitions and Registry

A shape pairs an input type with an output type and the prompt text for one
structured-generation task. Shapes are registered once at start-up and then
only read, so a registry can be shared by concurrent requests.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from .prompt import PromptTemplate, task_fields
from .schema import MARKDOWN, NUMBER, STRING, Array, Field, Object, TypeNode, check_type
from .types import SchemaDefinitionError, UnknownShapeError, Violation, ViolationKind

# Shape-specific semantic check, run after the output passed structural validation.
OutputCheck = Callable[[Any, Any], "list[Violation]"]

# Extra input rule, run after the input passed structural validation.
InputCheck = Callable[[Any], "list[Violation]"]


@dataclass(frozen=True)
class ShapeDefinition:
    id: str
    input_type: TypeNode
    output_type: TypeNode
    template: PromptTemplate = PromptTemplate()
    check: OutputCheck | None = None
    input_check: InputCheck | None = None


class ShapeRegistry:
    """Shapes by id. Types are checked for well-formedness on registration."""

    def __init__(self, shapes: list[ShapeDefinition] | None = None) -> None:
        self._shapes: dict[str, ShapeDefinition] = {}
        for shape in shapes or []:
            self.register(shape)

    def register(self, shape: ShapeDefinition) -> ShapeDefinition:
        if not shape.id:
            raise SchemaDefinitionError("shape id must not be empty")
        if shape.id in self._shapes:
            raise SchemaDefinitionError(f"shape {shape.id!r} is already registered")
        try:
            check_type(shape.input_type)
            check_type(shape.output_type)
        except SchemaDefinitionError as err:
            raise SchemaDefinitionError(f"shape {shape.id!r}: {err}") from err
        _check_task_fields(shape)
        self._shapes[shape.id] = shape
        return shape

    def get(self, shape_id: str) -> ShapeDefinition:
        try:
            return self._shapes[shape_id]
        except KeyError:
            raise UnknownShapeError(shape_id) from None

    def ids(self) -> list[str]:
        return list(self._shapes)

    def __contains__(self, shape_id: object) -> bool:
        return shape_id in self._shapes

    def __iter__(self) -> Iterator[ShapeDefinition]:
        return iter(self._shapes.values())

    def __len__(self) -> int:
        return len(self._shapes)


def _check_task_fields(shape: ShapeDefinition) -> None:
    try:
        names = task_fields(shape.template.task)
    except ValueError as err:
        raise SchemaDefinitionError(f"shape {shape.id!r}: malformed task template: {err}") from err
    declared = shape.input_type.field_names() if isinstance(shape.input_type, Object) else []
    unknown = [name for name in names if name not in declared]
    if unknown:
        raise SchemaDefinitionError(
            f"shape {shape.id!r}: task references undeclared input field(s) {', '.join(map(repr, unknown))}"
        )


# --- Built-in shapes ---

FEATURE_DESIGN = ShapeDefinition(
    id="FeatureDesign",
    input_type=Object((
        Field("repo_summary", STRING, description="What the repository does."),
        Field("constraints", Array(STRING), description="Constraints the design must respect."),
    )),
    output_type=Object((
        Field("name", STRING),
        Field("rationale", MARKDOWN),
        Field("components", Array(Object((
            Field("id", STRING),
            Field("responsibility", STRING),
            Field("api", MARKDOWN),
        )))),
        Field("risks", Array(STRING)),
    )),
    template=PromptTemplate(
        task="Design a feature for the repository described below. "
        "Respect every constraint and list concrete components and risks.",
    ),
)


def _check_unit_count(input_value: Any) -> list[Violation]:
    count = input_value["unit_count"]
    if math.isfinite(count) and count >= 0 and count == int(count):
        return []
    return [
        Violation(
            path=("unit_count",),
            kind=ViolationKind.TYPE_MISMATCH,
            message=f"expected a non-negative whole number, found {count:g}",
            expected="non-negative whole number",
            found=f"{count:g}",
        )
    ]


def _check_coordinate_count(input_value: Any, output_value: Any) -> list[Violation]:
    expected = input_value["unit_count"]
    found = len(output_value["coordinates"])
    if found == expected:
        return []
    return [
        Violation(
            path=("coordinates",),
            kind=ViolationKind.TYPE_MISMATCH,
            message=f"expected array with exactly {expected:g} items, found array with {found} items",
            expected=f"array with exactly {expected:g} items",
            found=f"array with {found} items",
        )
    ]


FORMATION = ShapeDefinition(
    id="Formation",
    input_type=Object((
        Field("formation_description", STRING),
        Field("unit_count", NUMBER),
    )),
    output_type=Object((
        Field("coordinates", Array(Object((
            Field("x", NUMBER),
            Field("y", NUMBER),
        )))),
    )),
    template=PromptTemplate(
        task="Generate 2D coordinates for a unit formation shaped as: {formation_description}. "
        "You MUST generate EXACTLY {unit_count} coordinates (x, y pairs), no more, no less. "
        "Coordinates should be reasonable 2D positions (typically between 0 and 100 for x and y), "
        "and the formation should be visually recognizable as the requested shape.",
        rules=(
            'Example output for 3 units: {"coordinates":[{"x":0.0,"y":0.0},{"x":10.0,"y":0.0},{"x":5.0,"y":10.0}]}',
        ),
    ),
    check=_check_coordinate_count,
    input_check=_check_unit_count,
)


def default_registry() -> ShapeRegistry:
    """Registry holding the built-in shapes."""
    return ShapeRegistry([FEATURE_DESIGN, FORMATION])
