"""
Shape Runner — Request Boundary

``ShapeRunner.run(shape_id, input_bytes, format)`` decodes the input, runs a
fresh orchestrator and encodes the accepted output in the same format.
Every failure comes back as ``RunResponse(ok=False, error=...)``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from .codec import get_codec
from .config import RunnerConfig
from .orchestrator import ShapeOrchestrator
from .provider import ModelInvoker
from .shapes import ShapeRegistry, default_registry
from .types import (
    CodecError,
    InputValidationError,
    TransportExhaustedError,
    UnknownShapeError,
    ValidationExhaustedError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResponse:
    output: bytes = b""
    ok: bool = False
    error: str = ""


class ShapeRunner:
    """Services shape requests against a registry and a model invoker."""

    def __init__(
        self,
        invoker: ModelInvoker,
        config: RunnerConfig | None = None,
        registry: ShapeRegistry | None = None,
    ) -> None:
        self._invoker = invoker
        self._config = config or RunnerConfig()
        self._registry = registry if registry is not None else default_registry()

    @property
    def registry(self) -> ShapeRegistry:
        return self._registry

    @property
    def config(self) -> RunnerConfig:
        return self._config

    async def run(self, shape_id: str, input_bytes: bytes, fmt: str = "json") -> RunResponse:
        if shape_id not in self._registry:
            logger.info("rejected request for unknown shape %r", shape_id)
            return RunResponse(error="unknown shape")

        try:
            codec = get_codec(fmt)
            input_value = codec.decode(input_bytes)
        except CodecError as err:
            return RunResponse(error=f"decode input failed: {err}")

        try:
            value = await self._run_with_deadline(shape_id, input_value)
        except InputValidationError as err:
            return RunResponse(error=f"invalid input: {err}")
        except ValidationExhaustedError as err:
            return RunResponse(error=f"output validation failed: {err}")
        except TransportExhaustedError as err:
            return RunResponse(error=f"transport failure: {err}")
        except asyncio.TimeoutError:
            logger.warning("shape %s: request deadline of %ss exceeded", shape_id, self._config.request_timeout_s)
            return RunResponse(error=f"deadline exceeded after {self._config.request_timeout_s:g}s")

        try:
            output = codec.encode(value)
        except CodecError as err:
            return RunResponse(error=f"encode output failed: {err}")

        logger.info("shape %s: request succeeded", shape_id)
        return RunResponse(output=output, ok=True)

    async def run_value(self, shape_id: str, input_value: Any) -> Any:
        """
        Run a shape on an already-decoded value.

        Raises UnknownShapeError, InputValidationError, ValidationExhaustedError,
        TransportExhaustedError, or asyncio.TimeoutError when the deadline expires.
        """
        if shape_id not in self._registry:
            raise UnknownShapeError(shape_id)
        return await self._run_with_deadline(shape_id, input_value)

    async def _run_with_deadline(self, shape_id: str, input_value: Any) -> Any:
        orchestrator = ShapeOrchestrator(self._registry.get(shape_id), self._invoker, self._config)
        outcome = await asyncio.wait_for(
            orchestrator.run(input_value),
            timeout=self._config.request_timeout_s,
        )
        return outcome.unwrap()
