"""
Shape Runner — Model Invocation

The ModelInvoker protocol the orchestrator depends on, and an aiohttp
implementation that talks to Ollama's /api/generate or to a plain JSON
endpoint ({"prompt"} -> {"output"}).
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Protocol, runtime_checkable

import aiohttp

from .types import TransportError, TransportErrorKind

logger = logging.getLogger(__name__)

__all__ = ["ModelInvoker", "HttpModelClient", "is_ollama_endpoint", "ollama_generate_url"]


@runtime_checkable
class ModelInvoker(Protocol):
    """
    Anything that can turn a prompt into raw model text.

    Implementations raise TransportError when no text could be obtained;
    they never judge whether the text is well-formed.
    """

    async def invoke(self, prompt: str, model: str, endpoint: str) -> str:
        ...


def is_ollama_endpoint(endpoint: str) -> bool:
    return "11434" in endpoint or "/api/generate" in endpoint


def ollama_generate_url(endpoint: str) -> str:
    if endpoint.endswith("/api/generate"):
        return endpoint
    return f"{endpoint.rstrip('/')}/api/generate"


class HttpModelClient:
    """ModelInvoker over HTTP with a lazily created, pooled aiohttp session."""

    def __init__(self, *, limit: int = 10, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._limit = limit
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=self._limit, keepalive_timeout=30)
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "HttpModelClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def invoke(self, prompt: str, model: str, endpoint: str) -> str:
        if is_ollama_endpoint(endpoint):
            url = ollama_generate_url(endpoint)
            payload: dict[str, Any] = {"model": model, "prompt": prompt, "stream": False}
            text_key = "response"
        else:
            url = endpoint
            payload = {"prompt": prompt}
            text_key = "output"

        body = await self._post(url, payload)

        if not isinstance(body, dict) or not isinstance(body.get(text_key), str):
            raise TransportError(
                TransportErrorKind.MALFORMED_RESPONSE,
                f"response from {url} has no string field {text_key!r}",
            )
        return body[text_key]

    async def _post(self, url: str, payload: dict[str, Any]) -> Any:
        session = await self._get_session()
        try:
            async with session.post(url, json=payload) as resp:
                if resp.status < 200 or resp.status >= 300:
                    error_text = await resp.text()
                    logger.warning("model endpoint %s returned HTTP %d", url, resp.status)
                    raise TransportError(
                        TransportErrorKind.NON_SUCCESS_STATUS,
                        f"HTTP {resp.status} from {url}: {error_text[:200]}",
                        status_code=resp.status,
                    )
                raw = await resp.read()
        except aiohttp.ClientConnectionError as err:
            # ServerTimeoutError is a connection error too, but it is a timeout.
            if isinstance(err, asyncio.TimeoutError):
                raise TransportError(TransportErrorKind.TIMEOUT, f"{url}: {err}") from err
            logger.warning("model endpoint %s unreachable: %s", url, err)
            raise TransportError(TransportErrorKind.CONNECTION_REFUSED, f"{url}: {err}") from err
        except aiohttp.ClientError as err:
            raise TransportError(TransportErrorKind.MALFORMED_RESPONSE, f"{url}: {err}") from err

        try:
            return json.loads(raw)
        except ValueError as err:
            raise TransportError(
                TransportErrorKind.MALFORMED_RESPONSE,
                f"response from {url} is not JSON: {err}",
            ) from err
