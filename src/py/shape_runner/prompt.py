"""
Shape Runner — Prompt Builder

Renders the text sent to the model: schema description, output rules, the
shape's task, the request input and, on retries, one bullet per violation
from the previous attempt. Deterministic for identical arguments.
"""

from __future__ import annotations

import json
import string
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Sequence

from .schema import TypeNode, describe
from .types import Violation, ViolationKind

__all__ = ["PromptTemplate", "build_prompt", "format_feedback", "task_fields", "DEFAULT_RULES"]

DEFAULT_SYSTEM = "You are a system that strictly outputs JSON."

DEFAULT_RULES: tuple[str, ...] = (
    "The JSON must be parseable and must not contain comments or explanations.",
    "Do not wrap it in markdown code fences.",
    "Do not include control characters (null bytes, etc.) in your output.",
    "Escape special characters properly in JSON strings (use \\n for newlines, etc.).",
)


@dataclass(frozen=True)
class PromptTemplate:
    """Per-shape prompt text."""

    system: str = DEFAULT_SYSTEM

    # Task statement. May reference top-level input fields, e.g. "{unit_count}".
    task: str = ""

    # Extra shape-specific rules, appended after DEFAULT_RULES.
    rules: tuple[str, ...] = ()


_DEFAULT_TEMPLATE = PromptTemplate()

_ABSENT = "(not provided)"


def task_fields(task: str) -> list[str]:
    """
    Top-level input field names referenced by a task's placeholders.
    Raises ValueError for a malformed format string.
    """
    names: list[str] = []
    for _, field_name, _, _ in string.Formatter().parse(task):
        if field_name is None:
            continue
        root = field_name.split(".", 1)[0].split("[", 1)[0]
        if root not in names:
            names.append(root)
    return names


class _TaskFields(dict):
    # Optional input fields may be absent from the request.
    def __missing__(self, key: str) -> str:
        return _ABSENT


def _render_value(value: Any, indent: int) -> list[str]:
    pad = " " * indent
    if isinstance(value, Mapping):
        lines: list[str] = []
        for key, item in value.items():
            if isinstance(item, (Mapping, list, tuple)) and item:
                lines.append(f"{pad}- {key}:")
                lines.extend(_render_value(item, indent + 2))
            else:
                lines.append(f"{pad}- {key}: {_scalar(item)}")
        return lines
    if isinstance(value, (list, tuple)):
        lines = []
        for item in value:
            if isinstance(item, (Mapping, list, tuple)) and item:
                lines.append(f"{pad}-")
                lines.extend(_render_value(item, indent + 2))
            else:
                lines.append(f"{pad}- {_scalar(item)}")
        return lines
    return [f"{pad}- {_scalar(value)}"]


def _scalar(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def format_feedback(violations: Sequence[Violation]) -> str:
    """Feedback section listing every violation from the previous attempt."""
    unparsable = [v for v in violations if v.kind is ViolationKind.UNPARSABLE_VALUE]
    structural = [v for v in violations if v.kind is not ViolationKind.UNPARSABLE_VALUE]
    sections: list[str] = []

    if unparsable:
        lines = ["Your previous response was not valid JSON. The error was:"]
        lines.extend(f"- {v.location}: {v.message}" for v in unparsable)
        lines.append("")
        lines.append(
            "Output ONLY valid, parseable JSON without any control characters or formatting issues."
        )
        sections.append("\n".join(lines))

    if structural:
        lines = ["Your previous JSON had these validation problems:"]
        lines.extend(f"- {v.kind.value} at {v.location}: {v.message}" for v in structural)
        lines.append("")
        lines.append(
            "Fix exactly these issues, keep every part that was already correct, "
            "and output ONLY the corrected JSON."
        )
        sections.append("\n".join(lines))

    return "\n\n".join(sections)


def build_prompt(
    input_value: Any,
    output_type: TypeNode,
    prior_violations: Sequence[Violation] = (),
    template: PromptTemplate | None = None,
) -> str:
    """Build the prompt for one attempt."""
    tpl = template or _DEFAULT_TEMPLATE
    parts = [
        tpl.system,
        "You must produce a JSON value that matches this schema:",
        describe(output_type),
        "\n".join((*DEFAULT_RULES, *tpl.rules)),
    ]

    if tpl.task:
        fields = _TaskFields(input_value if isinstance(input_value, Mapping) else {})
        parts.append(tpl.task.format_map(fields))

    parts.append("\n".join(["Context:", *_render_value(input_value, 0)]))

    if prior_violations:
        parts.append(format_feedback(prior_violations))

    parts.append("Respond with ONLY the JSON value. No markdown, no explanation, no additional text.")
    return "\n\n".join(parts) + "\n"
