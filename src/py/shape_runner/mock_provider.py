"""
Shape Runner — Mock Model Invoker

Deterministic stand-in for a language model:
- Scripted replies, consumed in order (a TransportErrorKind entry fails that call)
- Otherwise a reply rendered from a valid object in a configurable mode
- Optional latency, useful for timeout and deadline tests

No network, no API keys. Records every prompt it receives.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Union

from .types import TransportError, TransportErrorKind

OutputMode = Literal[
    "valid",             # The object as compact JSON
    "truncated",         # First 60% of the JSON text (simulates max_tokens)
    "missing_field",     # The object without its first key
    "wrong_type",        # The first scalar value swapped for another kind
    "extra_text",        # JSON between two lines of chat
    "markdown_wrapped",  # JSON inside a ```json code fence
    "invalid_json",      # Unquoted key and trailing comma; not repairable
    "non_json",          # An apology, no JSON at all
]

ScriptEntry = Union[str, TransportErrorKind]


def _without_first_key(valid: dict[str, Any]) -> str:
    return json.dumps(dict(list(valid.items())[1:]))


def _with_wrong_type(valid: dict[str, Any]) -> str:
    mutated = dict(valid)
    for key, value in mutated.items():
        if isinstance(value, bool):
            mutated[key] = "yes" if value else "no"
        elif isinstance(value, (int, float)):
            mutated[key] = f"{value}"
        elif isinstance(value, str):
            mutated[key] = 999
        else:
            continue
        break
    return json.dumps(mutated)


def _truncated(valid: dict[str, Any]) -> str:
    text = json.dumps(valid)
    return text[: len(text) * 3 // 5]


_RENDERERS: dict[str, Callable[[dict[str, Any]], str]] = {
    "valid": json.dumps,
    "truncated": _truncated,
    "missing_field": _without_first_key,
    "wrong_type": _with_wrong_type,
    "extra_text": lambda v: f"Here is the data you requested:\n{json.dumps(v)}\nI hope this helps!",
    "markdown_wrapped": lambda v: f"```json\n{json.dumps(v)}\n```",
    "invalid_json": lambda v: '{"invalid": "json", missing_fields: true,}',
    "non_json": lambda v: "I apologize, but I cannot provide the requested information in the specified format.",
}


@dataclass
class MockProviderConfig:
    # Replies returned in order before falling back to output_mode.
    script: list[ScriptEntry] = field(default_factory=list)

    # Mode used once the script is spent. A list cycles per generated reply.
    output_mode: OutputMode | list[OutputMode] = "valid"

    # Object the generated replies are rendered from.
    valid_output: dict[str, Any] = field(default_factory=dict)

    latency_ms: float = 0


class MockProvider:
    """ModelInvoker that replays a script, then renders replies by mode."""

    def __init__(self, config: MockProviderConfig | None = None) -> None:
        self._config = config or MockProviderConfig()
        modes = self._config.output_mode
        self._modes: list[OutputMode] = list(modes) if isinstance(modes, list) else [modes]
        self._script = list(self._config.script)
        self._generated = 0
        self.prompts: list[str] = []
        self.calls: list[tuple[str, str]] = []

    async def invoke(self, prompt: str, model: str, endpoint: str) -> str:
        self.prompts.append(prompt)
        self.calls.append((model, endpoint))

        if self._config.latency_ms > 0:
            await asyncio.sleep(self._config.latency_ms / 1000)

        if self._script:
            entry = self._script.pop(0)
            if isinstance(entry, TransportErrorKind):
                raise TransportError(entry, f"mock failure on call {self.call_count}")
            return entry

        mode = self._modes[self._generated % len(self._modes)]
        self._generated += 1
        return _RENDERERS[mode](self._config.valid_output)

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    def reset(self) -> None:
        self._script = list(self._config.script)
        self._generated = 0
        self.prompts.clear()
        self.calls.clear()
