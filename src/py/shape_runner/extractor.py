"""
Shape Runner — Output Extractor

Recovers a JSON value from raw model text:
fences -> balanced span -> control characters -> parse -> repair.

Never raises. The worst case is a single UnparsableValue violation, which
the orchestrator feeds back into the next attempt like any other violation.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterator

from .types import Violation, ViolationKind

__all__ = [
    "Extraction",
    "extract",
    "strip_markdown_fences",
    "extract_json",
    "strip_control_characters",
    "repair_json",
]

_WRAPPED_FENCE = re.compile(r"^```[\w+.-]*[ \t]*\n?([\s\S]*?)\n?[ \t]*```$")
_ANY_FENCE = re.compile(r"```[\w+.-]*[ \t]*\n([\s\S]*?)\n?[ \t]*```")
_OPENER = re.compile(r"[{\[]")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f]")
_TRAILING_COMMA = re.compile(r",\s*([\]}])")
_DANGLING_COMMA = re.compile(r",\s*$")

_CLOSERS = {"{": "}", "[": "]"}

_PREVIEW_CHARS = 200


@dataclass(frozen=True)
class Extraction:
    """What the extractor recovered from one model reply."""

    # Text handed to the JSON parser (after cleaning, before repair).
    cleaned: str

    # The decoded value; None when parsing failed.
    value: Any = None

    # Whether repair_json was needed to parse the text.
    repaired: bool = False

    violation: Violation | None = None

    @property
    def ok(self) -> bool:
        return self.violation is None


def strip_markdown_fences(raw: str) -> str:
    """
    Strip a markdown code fence around model output.
    The language tag after the opening fence is ignored.
    """
    trimmed = raw.strip()
    match = _WRAPPED_FENCE.match(trimmed)
    if match:
        return match.group(1).strip()

    # Fenced blocks after plain prose. A bracket before the first fence means
    # the reply is bare JSON and the fences belong to one of its strings.
    blocks = list(_ANY_FENCE.finditer(trimmed))
    if blocks and not _OPENER.search(trimmed, 0, blocks[0].start()):
        bodies = [block.group(1).strip() for block in blocks]
        for body in bodies:
            if body[:1] in _CLOSERS:
                return body
        if len(bodies) == 1:
            return bodies[0]

    # Opening fence with no closing fence (output cut short).
    if trimmed.startswith("```"):
        newline = trimmed.find("\n")
        return trimmed[newline + 1 :].strip() if newline != -1 else trimmed[3:].strip()

    return trimmed


def _scan(text: str, start: int = 0) -> tuple[list[tuple[int, str]], bool]:
    """
    Bracket characters outside JSON string literals, with their offsets.
    The flag is True when the text ends inside an unterminated string.
    """
    brackets: list[tuple[int, str]] = []
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{}[]":
            brackets.append((i, char))

    return brackets, in_string


def _balanced_span(text: str, start: int) -> tuple[str, int]:
    """The span opened at ``start`` and the offset just past it."""
    brackets, _ = _scan(text, start)
    stack: list[str] = []
    for i, char in brackets:
        if char in _CLOSERS:
            stack.append(char)
        elif stack and _CLOSERS[stack[-1]] == char:
            stack.pop()
            if not stack:
                return text[start : i + 1], i + 1

    # Unbalanced: keep everything from the opener (repair may close it)
    return text[start:], len(text)


def _candidate_spans(text: str) -> Iterator[str]:
    """Balanced spans left to right; each search resumes after the previous span."""
    pos = 0
    while True:
        match = _OPENER.search(text, pos)
        if match is None:
            return
        span, pos = _balanced_span(text, match.start())
        yield span


def extract_json(raw: str) -> str:
    """
    Return the first balanced JSON object or array in ``raw``.
    Text before the opener and after its matching closer is discarded.
    """
    trimmed = raw.strip()
    return next(_candidate_spans(trimmed), trimmed)


def strip_control_characters(text: str) -> str:
    """
    Remove raw control characters that break JSON parsing.
    Newlines and tabs become spaces; every other C0 character is dropped.
    """
    text = text.replace("\n", " ").replace("\t", " ")
    return _CONTROL_CHARS.sub("", text).strip()


def repair_json(raw: str) -> str:
    """
    Lightweight repair for truncated or sloppy output: drops trailing
    commas, terminates an open string and closes unmatched brackets.
    """
    text = _DANGLING_COMMA.sub("", _TRAILING_COMMA.sub(r"\1", raw.strip()))

    brackets, open_string = _scan(text)
    unclosed: list[str] = []
    for _, char in brackets:
        if char in _CLOSERS:
            unclosed.append(char)
        elif unclosed and _CLOSERS[unclosed[-1]] == char:
            unclosed.pop()

    if open_string:
        text += '"'
    return text + "".join(_CLOSERS[opener] for opener in reversed(unclosed))


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a JSON number")


def _loads(text: str) -> Any:
    return json.loads(text, parse_constant=_reject_constant)


def extract(raw: str) -> Extraction:
    """
    Recover a structured value from raw model text.

    Every balanced span is tried in order, so bracketed prose ahead of the
    value does not hide it. Repair runs only once no span parses as is.
    """
    text = strip_markdown_fences(raw or "")
    candidates = [strip_control_characters(span) for span in _candidate_spans(text)]
    if not candidates:
        candidates = [strip_control_characters(text)]

    parse_error: ValueError | None = None
    for cleaned in candidates:
        try:
            return Extraction(cleaned=cleaned, value=_loads(cleaned))
        except ValueError as err:
            parse_error = parse_error or err

    for cleaned in candidates:
        repaired = repair_json(cleaned)
        if repaired == cleaned:
            continue
        try:
            return Extraction(cleaned=cleaned, value=_loads(repaired), repaired=True)
        except ValueError:
            continue

    preview = raw if len(raw or "") <= _PREVIEW_CHARS else raw[:_PREVIEW_CHARS] + "..."
    return Extraction(
        cleaned=candidates[0],
        violation=Violation(
            path=(),
            kind=ViolationKind.UNPARSABLE_VALUE,
            message=f"output is not valid JSON ({parse_error}); received: {preview!r}",
        ),
    )
