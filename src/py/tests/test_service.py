"""
Shape Runner — Boundary Tests

Codecs, the ShapeRunner request boundary, configuration loading, the aiohttp
model client against a local test server, and the command-line front end.
"""

from __future__ import annotations

import json

import msgpack
import pytest
from aiohttp import test_utils, web

from shape_runner import (
    CodecError,
    STRING,
    Field,
    HttpModelClient,
    JsonCodec,
    MockProvider,
    MockProviderConfig,
    ModelInvoker,
    MsgPackCodec,
    Object,
    PromptTemplate,
    RunnerConfig,
    ShapeDefinition,
    ShapeRegistry,
    ShapeRunner,
    TransportError,
    TransportErrorKind,
    UnknownShapeError,
    get_codec,
)
from shape_runner import cli
from shape_runner.provider import is_ollama_endpoint, ollama_generate_url


# ============================================================================
# Codecs
# ============================================================================


class TestCodecs:
    def test_json_keeps_unicode(self):
        data = JsonCodec().encode({"name": "Café"})
        assert "Café".encode("utf-8") in data
        assert JsonCodec().decode(data) == {"name": "Café"}

    def test_msgpack_decodes_strings_as_str(self, valid_design):
        data = MsgPackCodec().encode(valid_design)
        assert isinstance(data, bytes)
        assert MsgPackCodec().decode(data) == valid_design

    def test_invalid_json_payload(self):
        with pytest.raises(CodecError, match="invalid JSON payload"):
            JsonCodec().decode(b"{not json")

    def test_invalid_msgpack_payload(self):
        with pytest.raises(CodecError, match="invalid MessagePack payload"):
            MsgPackCodec().decode(b"\xc1")

    def test_unencodable_value(self):
        with pytest.raises(CodecError):
            JsonCodec().encode({"when": object()})

    def test_json_rejects_non_finite_numbers(self):
        with pytest.raises(CodecError, match="is not a JSON number"):
            JsonCodec().decode(b'{"unit_count": NaN}')
        with pytest.raises(CodecError):
            JsonCodec().encode({"x": float("inf")})

    def test_get_codec(self):
        assert get_codec("json").name == "json"
        assert get_codec("msgpack").name == "msgpack"
        with pytest.raises(CodecError, match="unknown format 'yaml'"):
            get_codec("yaml")


# ============================================================================
# Request boundary
# ============================================================================


def _runner(provider: MockProvider, **config) -> ShapeRunner:
    config.setdefault("backoff_initial_ms", 0)
    config.setdefault("jitter_mode", "none")
    return ShapeRunner(provider, RunnerConfig(**config))


class TestShapeRunner:
    @pytest.mark.asyncio
    async def test_json_request(self, design_input, valid_design):
        runner = _runner(MockProvider(MockProviderConfig(valid_output=valid_design)))

        response = await runner.run("FeatureDesign", json.dumps(design_input).encode())

        assert response.ok
        assert response.error == ""
        assert json.loads(response.output) == valid_design

    @pytest.mark.asyncio
    async def test_msgpack_request(self, design_input, valid_design):
        runner = _runner(MockProvider(MockProviderConfig(valid_output=valid_design)))

        response = await runner.run("FeatureDesign", msgpack.packb(design_input), "msgpack")

        assert response.ok
        assert msgpack.unpackb(response.output, raw=False) == valid_design

    @pytest.mark.asyncio
    async def test_unknown_shape(self):
        provider = MockProvider()
        response = await _runner(provider).run("NoSuchShape", b"{}")
        assert response.ok is False
        assert response.error == "unknown shape"
        assert response.output == b""
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_undecodable_input(self):
        provider = MockProvider()
        response = await _runner(provider).run("FeatureDesign", b"{not json")
        assert response.error.startswith("decode input failed:")
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_unknown_format(self, design_input):
        response = await _runner(MockProvider()).run(
            "FeatureDesign", json.dumps(design_input).encode(), "yaml"
        )
        assert response.error.startswith("decode input failed: unknown format 'yaml'")

    @pytest.mark.asyncio
    async def test_invalid_input(self):
        provider = MockProvider()
        response = await _runner(provider).run("FeatureDesign", b'{"repo_summary": "A blog"}')
        assert response.error.startswith("invalid input:")
        assert "MissingField at $.constraints" in response.error
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_validation_exhausted(self, design_input):
        provider = MockProvider(MockProviderConfig(script=['{"name": "X", "risks": [1]}'] * 3))

        response = await _runner(provider).run("FeatureDesign", json.dumps(design_input).encode())

        assert response.ok is False
        assert response.error.startswith("output validation failed:")
        assert "after 3 attempt(s)" in response.error
        assert "MissingField at $.rationale" in response.error
        assert "MissingField at $.components" in response.error
        assert "TypeMismatch at $.risks[0]" in response.error

    @pytest.mark.asyncio
    async def test_transport_failure(self, design_input):
        provider = MockProvider(MockProviderConfig(script=[TransportErrorKind.CONNECTION_REFUSED] * 2))

        response = await _runner(provider).run("FeatureDesign", json.dumps(design_input).encode())

        assert response.error.startswith("transport failure:")
        assert "ConnectionRefused" in response.error

    @pytest.mark.asyncio
    async def test_request_deadline(self, design_input):
        provider = MockProvider(MockProviderConfig(latency_ms=200))
        runner = _runner(provider, request_timeout_s=0.05)

        response = await runner.run("FeatureDesign", json.dumps(design_input).encode())

        assert response.error == "deadline exceeded after 0.05s"

    @pytest.mark.asyncio
    async def test_run_value(self, design_input, valid_design):
        runner = _runner(MockProvider(MockProviderConfig(valid_output=valid_design)))
        assert await runner.run_value("FeatureDesign", design_input) == valid_design
        with pytest.raises(UnknownShapeError):
            await runner.run_value("Nope", design_input)

    @pytest.mark.asyncio
    async def test_absent_optional_task_field(self):
        shape = ShapeDefinition(
            id="Summary",
            input_type=Object((Field("text", STRING), Field("audience", STRING, required=False))),
            output_type=Object((Field("summary", STRING),)),
            template=PromptTemplate(task="Summarize the text for {audience}."),
        )
        provider = MockProvider(MockProviderConfig(valid_output={"summary": "short"}))
        runner = ShapeRunner(provider, RunnerConfig(), ShapeRegistry([shape]))

        response = await runner.run("Summary", b'{"text": "long text"}')

        assert response.ok, response.error
        assert "Summarize the text for (not provided)." in provider.prompts[0]

    @pytest.mark.asyncio
    async def test_fractional_unit_count_rejected(self):
        provider = MockProvider()
        response = await _runner(provider).run(
            "Formation", b'{"formation_description": "a line", "unit_count": 2.5}'
        )
        assert response.error.startswith("invalid input:")
        assert "$.unit_count" in response.error
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_formation_request(self):
        reply = {"coordinates": [{"x": 0, "y": 0}, {"x": 10, "y": 0}]}
        provider = MockProvider(MockProviderConfig(valid_output=reply))

        response = await _runner(provider).run(
            "Formation", b'{"formation_description": "a line", "unit_count": 2}'
        )

        assert response.ok
        assert json.loads(response.output) == reply


# ============================================================================
# Configuration
# ============================================================================


class TestRunnerConfig:
    def test_defaults(self):
        config = RunnerConfig()
        assert config.max_attempts == 3
        assert config.max_transport_attempts == 2
        assert config.endpoint == "http://localhost:11434/api/generate"
        assert config.request_timeout_s is None

    def test_from_env(self):
        config = RunnerConfig.from_env({
            "LLM_BASE_URL": "http://models:9000/llm",
            "OLLAMA_MODEL": "mistral",
            "SHAPE_RUNNER_CALL_TIMEOUT": "15",
            "SHAPE_RUNNER_REQUEST_TIMEOUT": "90",
            "SHAPE_RUNNER_MAX_ATTEMPTS": "5",
            "SHAPE_RUNNER_MAX_TRANSPORT_ATTEMPTS": "4",
        })
        assert config.endpoint == "http://models:9000/llm"
        assert config.model == "mistral"
        assert config.call_timeout_s == 15.0
        assert config.request_timeout_s == 90.0
        assert config.max_attempts == 5
        assert config.max_transport_attempts == 4

    def test_overrides_win_and_none_is_ignored(self):
        config = RunnerConfig.from_env(
            {"OLLAMA_MODEL": "mistral", "SHAPE_RUNNER_MAX_ATTEMPTS": "5"},
            model=None,
            max_attempts=2,
        )
        assert config.model == "mistral"
        assert config.max_attempts == 2

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"max_transport_attempts": 0},
            {"call_timeout_s": 0},
            {"request_timeout_s": -1},
            {"jitter_mode": "sometimes"},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            RunnerConfig(**kwargs)


# ============================================================================
# HTTP model client
# ============================================================================


def _model_app(handler) -> web.Application:
    app = web.Application()
    app.router.add_post("/llm", handler)
    app.router.add_post("/api/generate", handler)
    return app


class TestEndpointDetection:
    def test_ollama_detection(self):
        assert is_ollama_endpoint("http://localhost:11434")
        assert is_ollama_endpoint("http://gpu-box/api/generate")
        assert not is_ollama_endpoint("http://localhost:8080/llm")

    def test_generate_url(self):
        assert ollama_generate_url("http://localhost:11434/") == "http://localhost:11434/api/generate"
        assert ollama_generate_url("http://h/api/generate") == "http://h/api/generate"


class TestHttpModelClient:
    def test_satisfies_protocol(self):
        assert isinstance(HttpModelClient(), ModelInvoker)
        assert isinstance(MockProvider(), ModelInvoker)

    @pytest.mark.asyncio
    async def test_plain_endpoint(self):
        received = []

        async def handler(request):
            received.append(await request.json())
            return web.json_response({"output": '{"ok": true}'})

        async with test_utils.TestServer(_model_app(handler)) as server:
            async with HttpModelClient() as client:
                text = await client.invoke("hello", "ignored", str(server.make_url("/llm")))

        assert text == '{"ok": true}'
        assert received == [{"prompt": "hello"}]

    @pytest.mark.asyncio
    async def test_connections_are_kept_alive(self):
        keep_alive = []

        async def handler(request):
            keep_alive.append(request.keep_alive)
            return web.json_response({"output": "{}"})

        async with test_utils.TestServer(_model_app(handler)) as server:
            async with HttpModelClient() as client:
                url = str(server.make_url("/llm"))
                await client.invoke("a", "m", url)
                await client.invoke("b", "m", url)

        assert keep_alive == [True, True]

    @pytest.mark.asyncio
    async def test_ollama_endpoint(self):
        received = []

        async def handler(request):
            received.append(await request.json())
            return web.json_response({"response": "[1, 2]", "done": True})

        async with test_utils.TestServer(_model_app(handler)) as server:
            async with HttpModelClient() as client:
                text = await client.invoke("hi", "llama3.2:3b", str(server.make_url("/api/generate")))

        assert text == "[1, 2]"
        assert received == [{"model": "llama3.2:3b", "prompt": "hi", "stream": False}]

    @pytest.mark.asyncio
    async def test_non_success_status(self):
        async def handler(request):
            return web.Response(status=503, text="overloaded")

        async with test_utils.TestServer(_model_app(handler)) as server:
            async with HttpModelClient() as client:
                with pytest.raises(TransportError) as exc_info:
                    await client.invoke("p", "m", str(server.make_url("/llm")))

        assert exc_info.value.kind is TransportErrorKind.NON_SUCCESS_STATUS
        assert exc_info.value.status_code == 503
        assert "overloaded" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_text_field(self):
        async def handler(request):
            return web.json_response({"result": "wrong key"})

        async with test_utils.TestServer(_model_app(handler)) as server:
            async with HttpModelClient() as client:
                with pytest.raises(TransportError) as exc_info:
                    await client.invoke("p", "m", str(server.make_url("/llm")))

        assert exc_info.value.kind is TransportErrorKind.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        async def handler(request):
            return web.Response(text="<html>gateway</html>")

        async with test_utils.TestServer(_model_app(handler)) as server:
            async with HttpModelClient() as client:
                with pytest.raises(TransportError) as exc_info:
                    await client.invoke("p", "m", str(server.make_url("/llm")))

        assert exc_info.value.kind is TransportErrorKind.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        async with HttpModelClient() as client:
            with pytest.raises(TransportError) as exc_info:
                await client.invoke("p", "m", "http://127.0.0.1:1/llm")

        assert exc_info.value.kind is TransportErrorKind.CONNECTION_REFUSED

    @pytest.mark.asyncio
    async def test_end_to_end_with_feedback(self, design_input, valid_design):
        replies = iter([
            {"output": "Sure! " + json.dumps({"name": "X"})},
            {"output": "```json\n" + json.dumps(valid_design) + "\n```"},
        ])
        prompts = []

        async def handler(request):
            prompts.append((await request.json())["prompt"])
            return web.json_response(next(replies))

        async with test_utils.TestServer(_model_app(handler)) as server:
            async with HttpModelClient() as client:
                config = RunnerConfig(endpoint=str(server.make_url("/llm")), call_timeout_s=5)
                response = await ShapeRunner(client, config).run(
                    "FeatureDesign", json.dumps(design_input).encode()
                )

        assert response.ok, response.error
        assert json.loads(response.output) == valid_design
        assert len(prompts) == 2
        assert "MissingField at $.rationale" in prompts[1]


# ============================================================================
# Command line
# ============================================================================


class _FakeClient(MockProvider):
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "LLM_BASE_URL",
        "OLLAMA_MODEL",
        "SHAPE_RUNNER_CALL_TIMEOUT",
        "SHAPE_RUNNER_REQUEST_TIMEOUT",
        "SHAPE_RUNNER_MAX_ATTEMPTS",
        "SHAPE_RUNNER_MAX_TRANSPORT_ATTEMPTS",
    ):
        monkeypatch.delenv(name, raising=False)


class TestCli:
    def test_shapes_lists_registered_shapes(self, capsys):
        assert cli.main(["shapes"]) == 0
        out = capsys.readouterr().out
        assert "FeatureDesign\n  input:\n" in out
        assert "Formation" in out
        assert "    - object with fields:" in out

    def test_run_prints_accepted_output(self, tmp_path, monkeypatch, capsys, clean_env, design_input, valid_design):
        path = tmp_path / "input.json"
        path.write_text(json.dumps(design_input), encoding="utf-8")
        monkeypatch.setattr(
            cli,
            "HttpModelClient",
            lambda: _FakeClient(MockProviderConfig(valid_output=valid_design)),
        )

        assert cli.main(["run", "-i", str(path)]) == 0
        assert json.loads(capsys.readouterr().out) == valid_design

    def test_run_reports_failure(self, tmp_path, monkeypatch, capsys, clean_env, design_input):
        path = tmp_path / "input.json"
        path.write_text(json.dumps(design_input), encoding="utf-8")
        monkeypatch.setattr(
            cli,
            "HttpModelClient",
            lambda: _FakeClient(MockProviderConfig(output_mode="non_json")),
        )

        assert cli.main(["run", "-i", str(path), "--max-attempts", "1"]) == 1
        assert "error: output validation failed" in capsys.readouterr().err

    def test_run_rejects_bad_input_file(self, tmp_path, capsys, clean_env):
        path = tmp_path / "input.json"
        path.write_text("{oops", encoding="utf-8")

        assert cli.main(["run", "-i", str(path)]) == 1
        assert "input is not valid JSON" in capsys.readouterr().err

    def test_run_rejects_bad_config(self, tmp_path, capsys, clean_env, design_input):
        path = tmp_path / "input.json"
        path.write_text(json.dumps(design_input), encoding="utf-8")

        assert cli.main(["run", "-i", str(path), "--max-attempts", "0"]) == 1
        assert "invalid configuration" in capsys.readouterr().err
