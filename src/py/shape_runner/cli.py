"""Command-line front end: run a shape in-process against a model endpoint."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Sequence

from .codec import get_codec
from .config import RunnerConfig
from .provider import HttpModelClient
from .schema import describe
from .service import ShapeRunner
from .shapes import default_registry


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shape-runner",
        description="Request schema-conformant structured output from a language model.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a shape on a JSON input.")
    run.add_argument("-s", "--shape", default="FeatureDesign", help="Shape id (default: FeatureDesign).")
    run.add_argument("-i", "--input", default="-", help='Input JSON file, or "-" for stdin.')
    run.add_argument(
        "-f",
        "--format",
        choices=("json", "msgpack"),
        default="json",
        help="Output format (default: json).",
    )
    run.add_argument("--endpoint", help="Model endpoint URL (default: $LLM_BASE_URL or Ollama).")
    run.add_argument("--model", help="Model identifier (default: $OLLAMA_MODEL or llama3.2:3b).")
    run.add_argument("-t", "--timeout", type=float, help="Request deadline in seconds.")
    run.add_argument("--call-timeout", type=float, help="Per-invocation timeout in seconds.")
    run.add_argument("--max-attempts", type=int, help="Validation attempts (default: 3).")

    sub.add_parser("shapes", help="List registered shapes and their output types.")
    return parser


def _read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


async def _run(args: argparse.Namespace) -> int:
    try:
        input_value = json.loads(_read_input(args.input))
    except OSError as err:
        print(f"error: cannot read input {args.input}: {err}", file=sys.stderr)
        return 1
    except ValueError as err:
        print(f"error: input is not valid JSON: {err}", file=sys.stderr)
        return 1

    try:
        config = RunnerConfig.from_env(
            endpoint=args.endpoint,
            model=args.model,
            request_timeout_s=args.timeout,
            call_timeout_s=args.call_timeout,
            max_attempts=args.max_attempts,
        )
    except ValueError as err:
        print(f"error: invalid configuration: {err}", file=sys.stderr)
        return 1

    codec = get_codec(args.format)
    async with HttpModelClient() as client:
        runner = ShapeRunner(client, config)
        response = await runner.run(args.shape, codec.encode(input_value), args.format)

    if not response.ok:
        print(f"error: {response.error}", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps(codec.decode(response.output), indent=2, ensure_ascii=False))
    else:
        sys.stdout.buffer.write(response.output)
        sys.stdout.buffer.flush()
    return 0


def _list_shapes() -> int:
    for shape in default_registry():
        print(f"{shape.id}")
        print("  input:")
        print(describe(shape.input_type, indent=4))
        print("  output:")
        print(describe(shape.output_type, indent=4))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "shapes":
        return _list_shapes()
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
