"""
Shape Runner — Configuration

Immutable settings handed to the orchestrator and the request boundary.
Loaded once at process start, from code or from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Literal, Mapping

if TYPE_CHECKING:
    from .types import Attempt, RunOutcome, TransportError

JitterMode = Literal["full", "equal", "none"]

DEFAULT_ENDPOINT = "http://localhost:11434/api/generate"
DEFAULT_MODEL = "llama3.2:3b"


@dataclass(frozen=True)
class RunnerConfig:
    """Configuration for one shape runner process."""

    # Model HTTP endpoint and model identifier passed to the invoker.
    endpoint: str = DEFAULT_ENDPOINT
    model: str = DEFAULT_MODEL

    # Per-invocation timeout in seconds. Expiry counts as a transport failure.
    call_timeout_s: float = 60.0

    # Invoke -> validate cycles per request. Default: 3.
    max_attempts: int = 3

    # Tries per invocation when the transport fails. Default: 2 (one retry).
    max_transport_attempts: int = 2

    # Deadline for a whole request at the service boundary. None disables it.
    request_timeout_s: float | None = None

    # Backoff between transport retries.
    backoff_initial_ms: float = 200
    backoff_max_ms: float = 5_000
    backoff_multiplier: float = 2
    jitter_mode: JitterMode = "full"

    # Fired before each feedback retry with the attempt that just failed.
    on_retry: Callable[[Attempt], None] | None = None

    # Fired before each transport retry with the error and the try number (1-based).
    on_transport_retry: Callable[[TransportError, int], None] | None = None

    # Fired when every validation attempt has failed.
    on_exhausted: Callable[[RunOutcome], None] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.max_transport_attempts < 1:
            raise ValueError(
                f"max_transport_attempts must be >= 1, got {self.max_transport_attempts}"
            )
        if self.call_timeout_s <= 0:
            raise ValueError(f"call_timeout_s must be > 0, got {self.call_timeout_s}")
        if self.request_timeout_s is not None and self.request_timeout_s <= 0:
            raise ValueError(f"request_timeout_s must be > 0, got {self.request_timeout_s}")
        if self.jitter_mode not in ("full", "equal", "none"):
            raise ValueError(f"unknown jitter_mode {self.jitter_mode!r}")

    @staticmethod
    def from_env(environ: Mapping[str, str] | None = None, **overrides: object) -> "RunnerConfig":
        """
        Build a config from environment variables.

        LLM_BASE_URL, OLLAMA_MODEL, SHAPE_RUNNER_CALL_TIMEOUT,
        SHAPE_RUNNER_REQUEST_TIMEOUT, SHAPE_RUNNER_MAX_ATTEMPTS and
        SHAPE_RUNNER_MAX_TRANSPORT_ATTEMPTS are read; keyword overrides win.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {
            "endpoint": env.get("LLM_BASE_URL") or DEFAULT_ENDPOINT,
            "model": env.get("OLLAMA_MODEL") or DEFAULT_MODEL,
        }
        if env.get("SHAPE_RUNNER_CALL_TIMEOUT"):
            values["call_timeout_s"] = float(env["SHAPE_RUNNER_CALL_TIMEOUT"])
        if env.get("SHAPE_RUNNER_REQUEST_TIMEOUT"):
            values["request_timeout_s"] = float(env["SHAPE_RUNNER_REQUEST_TIMEOUT"])
        if env.get("SHAPE_RUNNER_MAX_ATTEMPTS"):
            values["max_attempts"] = int(env["SHAPE_RUNNER_MAX_ATTEMPTS"])
        if env.get("SHAPE_RUNNER_MAX_TRANSPORT_ATTEMPTS"):
            values["max_transport_attempts"] = int(env["SHAPE_RUNNER_MAX_TRANSPORT_ATTEMPTS"])
        values.update({k: v for k, v in overrides.items() if v is not None})
        return RunnerConfig(**values)  # type: ignore[arg-type]
