"""
Shape Runner — Retry Orchestrator

Drives one request through START -> INVOKING -> VALIDATING and on to
ACCEPTED or EXHAUSTED. Each validation failure rebuilds the prompt with the
violations and invokes the model again, up to ``max_attempts`` cycles.

Transport failures are a separate concern: they are retried with backoff
and an unchanged prompt under ``max_transport_attempts``, and exhausting
that budget aborts the request with TransportExhaustedError.

One orchestrator instance serves exactly one request.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

from .config import JitterMode, RunnerConfig
from .extractor import extract
from .prompt import build_prompt
from .provider import ModelInvoker
from .shapes import ShapeDefinition
from .types import (
    Attempt,
    InputValidationError,
    RunOutcome,
    RunState,
    TransportError,
    TransportErrorKind,
    TransportExhaustedError,
    Violation,
)
from .validator import validate

logger = logging.getLogger(__name__)

__all__ = ["ShapeOrchestrator", "calculate_backoff", "run_shape"]

_TERMINAL = frozenset({RunState.ACCEPTED, RunState.EXHAUSTED})


def calculate_backoff(
    attempt: int,
    initial_delay_ms: float,
    max_delay_ms: float,
    multiplier: float,
    jitter_mode: JitterMode,
) -> float:
    """Backoff delay in milliseconds before transport retry number ``attempt`` (0-based)."""
    capped_delay = min(initial_delay_ms * (multiplier**attempt), max_delay_ms)

    if jitter_mode == "full":
        return random.random() * capped_delay
    elif jitter_mode == "equal":
        return capped_delay / 2 + random.random() * capped_delay / 2
    else:  # "none"
        return capped_delay


class ShapeOrchestrator:
    """State machine for one shape request."""

    def __init__(
        self,
        shape: ShapeDefinition,
        invoker: ModelInvoker,
        config: RunnerConfig | None = None,
    ) -> None:
        self._shape = shape
        self._invoker = invoker
        self._config = config or RunnerConfig()

        self._state = RunState.START
        self._transitions: list[RunState] = [RunState.START]
        self._attempts: list[Attempt] = []

        self._input: Any = None
        self._prompt = ""
        self._raw = ""
        self._started = False

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def transitions(self) -> list[RunState]:
        """Every state entered so far, starting with START."""
        return list(self._transitions)

    @property
    def attempts(self) -> list[Attempt]:
        return list(self._attempts)

    async def run(self, input_value: Any) -> RunOutcome:
        """
        Run the request to a terminal state.

        Raises InputValidationError before any model call when the input does
        not match the shape's input type, and TransportExhaustedError when the
        model cannot be reached. Validation exhaustion is returned, not raised.
        """
        if self._started:
            raise RuntimeError("ShapeOrchestrator instances serve a single request")
        self._started = True

        input_violations = validate(input_value, self._shape.input_type)
        if not input_violations and self._shape.input_check is not None:
            input_violations = list(self._shape.input_check(input_value))
        if input_violations:
            logger.info(
                "shape %s: input rejected with %d violation(s)",
                self._shape.id,
                len(input_violations),
            )
            raise InputValidationError(input_violations)

        self._input = input_value
        self._prompt = build_prompt(input_value, self._shape.output_type, (), self._shape.template)
        self._transition(RunState.INVOKING)

        while self._state not in _TERMINAL:
            if self._state is RunState.INVOKING:
                self._raw = await self._invoke(self._prompt)
                self._transition(RunState.VALIDATING)
            else:
                self._validate_reply()

        return self._finish()

    # --- States ---

    def _transition(self, state: RunState) -> None:
        self._state = state
        self._transitions.append(state)

    async def _invoke(self, prompt: str) -> str:
        cfg = self._config
        index = len(self._attempts) + 1
        logger.info("shape %s: attempt %d/%d", self._shape.id, index, cfg.max_attempts)
        logger.debug("shape %s: prompt for attempt %d:\n%s", self._shape.id, index, prompt)

        errors: list[TransportError] = []
        for try_number in range(1, cfg.max_transport_attempts + 1):
            try:
                return await asyncio.wait_for(
                    self._invoker.invoke(prompt, cfg.model, cfg.endpoint),
                    timeout=cfg.call_timeout_s,
                )
            except asyncio.TimeoutError:
                error = TransportError(
                    TransportErrorKind.TIMEOUT,
                    f"no response within {cfg.call_timeout_s:g}s",
                )
            except TransportError as err:
                error = err
            errors.append(error)

            if try_number >= cfg.max_transport_attempts:
                break

            delay = calculate_backoff(
                try_number - 1,
                cfg.backoff_initial_ms,
                cfg.backoff_max_ms,
                cfg.backoff_multiplier,
                cfg.jitter_mode,
            )
            logger.warning(
                "shape %s: transport failure (%s), retrying in %.0fms (try %d/%d)",
                self._shape.id,
                error,
                delay,
                try_number + 1,
                cfg.max_transport_attempts,
            )
            if cfg.on_transport_retry:
                cfg.on_transport_retry(error, try_number)
            await asyncio.sleep(delay / 1000)

        logger.error("shape %s: transport budget exhausted", self._shape.id)
        raise TransportExhaustedError(errors)

    def _validate_reply(self) -> None:
        cfg = self._config
        attempt = self._evaluate(len(self._attempts) + 1, self._raw)
        self._attempts.append(attempt)

        if attempt.accepted:
            logger.info("shape %s: accepted on attempt %d", self._shape.id, attempt.index)
            self._transition(RunState.ACCEPTED)
            return

        logger.info(
            "shape %s: attempt %d rejected with %d violation(s)",
            self._shape.id,
            attempt.index,
            len(attempt.violations),
        )
        for violation in attempt.violations:
            logger.debug("shape %s:   %s", self._shape.id, violation)

        if attempt.index >= cfg.max_attempts:
            self._transition(RunState.EXHAUSTED)
            return

        if cfg.on_retry:
            cfg.on_retry(attempt)
        self._prompt = build_prompt(
            self._input,
            self._shape.output_type,
            attempt.violations,
            self._shape.template,
        )
        self._transition(RunState.INVOKING)

    def _evaluate(self, index: int, raw: str) -> Attempt:
        logger.debug("shape %s: raw reply %d: %r", self._shape.id, index, raw)
        extraction = extract(raw)
        if extraction.violation is not None:
            return Attempt(index=index, raw_text=raw, violations=(extraction.violation,))

        violations: list[Violation] = validate(extraction.value, self._shape.output_type)
        if not violations and self._shape.check is not None:
            violations = list(self._shape.check(self._input, extraction.value))
        return Attempt(
            index=index,
            raw_text=raw,
            value=extraction.value,
            violations=tuple(violations),
        )

    def _finish(self) -> RunOutcome:
        attempts = tuple(self._attempts)
        last = attempts[-1]

        if self._state is RunState.ACCEPTED:
            return RunOutcome(accepted=True, attempts=attempts, value=last.value)

        outcome = RunOutcome(accepted=False, attempts=attempts, violations=last.violations)
        logger.warning(
            "shape %s: exhausted %d attempt(s) with %d unresolved violation(s)",
            self._shape.id,
            outcome.attempt_count,
            len(outcome.violations),
        )
        if self._config.on_exhausted:
            self._config.on_exhausted(outcome)
        return outcome


async def run_shape(
    shape: ShapeDefinition,
    input_value: Any,
    invoker: ModelInvoker,
    config: RunnerConfig | None = None,
) -> RunOutcome:
    """Run one request through a fresh orchestrator."""
    return await ShapeOrchestrator(shape, invoker, config).run(input_value)
