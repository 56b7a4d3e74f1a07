"""
Shape Runner

Schema-checked structured output from a language model:
type model -> validator -> extractor -> prompt builder -> retry orchestrator.
Package entry point — re-exports the public API.
"""

from .codec import Codec, JsonCodec, MsgPackCodec, get_codec
from .config import RunnerConfig
from .extractor import (
    Extraction,
    extract,
    extract_json,
    repair_json,
    strip_control_characters,
    strip_markdown_fences,
)
from .mock_provider import MockProvider, MockProviderConfig
from .orchestrator import ShapeOrchestrator, calculate_backoff, run_shape
from .prompt import PromptTemplate, build_prompt
from .provider import HttpModelClient, ModelInvoker
from .schema import (
    BOOLEAN,
    MARKDOWN,
    NUMBER,
    STRING,
    Array,
    Field,
    Object,
    Primitive,
    TypeNode,
    check_type,
    describe,
)
from .service import RunResponse, ShapeRunner
from .shapes import FEATURE_DESIGN, FORMATION, ShapeDefinition, ShapeRegistry, default_registry
from .types import (
    Attempt,
    CodecError,
    InputValidationError,
    RunOutcome,
    RunState,
    SchemaDefinitionError,
    ShapeRunnerError,
    TransportError,
    TransportErrorKind,
    TransportExhaustedError,
    UnknownShapeError,
    ValidationExhaustedError,
    Violation,
    ViolationKind,
    format_violations,
)
from .validator import validate

__all__ = [
    "Codec",
    "JsonCodec",
    "MsgPackCodec",
    "get_codec",
    "RunnerConfig",
    "Extraction",
    "extract",
    "extract_json",
    "repair_json",
    "strip_control_characters",
    "strip_markdown_fences",
    "MockProvider",
    "MockProviderConfig",
    "ShapeOrchestrator",
    "calculate_backoff",
    "run_shape",
    "PromptTemplate",
    "build_prompt",
    "HttpModelClient",
    "ModelInvoker",
    "BOOLEAN",
    "MARKDOWN",
    "NUMBER",
    "STRING",
    "Array",
    "Field",
    "Object",
    "Primitive",
    "TypeNode",
    "check_type",
    "describe",
    "RunResponse",
    "ShapeRunner",
    "FEATURE_DESIGN",
    "FORMATION",
    "ShapeDefinition",
    "ShapeRegistry",
    "default_registry",
    "Attempt",
    "CodecError",
    "InputValidationError",
    "RunOutcome",
    "RunState",
    "SchemaDefinitionError",
    "ShapeRunnerError",
    "TransportError",
    "TransportErrorKind",
    "TransportExhaustedError",
    "UnknownShapeError",
    "ValidationExhaustedError",
    "Violation",
    "ViolationKind",
    "format_violations",
    "validate",
]
