"""
Shape Runner — Payload Codecs

Wire encodings for request input and accepted output: JSON for humans and
debugging, MessagePack as the compact binary format.
"""

from __future__ import annotations

import json
from typing import Any, Literal, Protocol

import msgpack

from .types import CodecError

Format = Literal["json", "msgpack"]


class Codec(Protocol):
    name: str

    def encode(self, value: Any) -> bytes:
        ...

    def decode(self, data: bytes) -> Any:
        ...


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a JSON number")


class JsonCodec:
    name = "json"

    def encode(self, value: Any) -> bytes:
        try:
            return json.dumps(value, ensure_ascii=False, allow_nan=False).encode("utf-8")
        except (TypeError, ValueError) as err:
            raise CodecError(f"cannot encode value as JSON: {err}") from err

    def decode(self, data: bytes) -> Any:
        try:
            return json.loads(data, parse_constant=_reject_constant)
        except (UnicodeDecodeError, ValueError) as err:
            raise CodecError(f"invalid JSON payload: {err}") from err


class MsgPackCodec:
    name = "msgpack"

    def encode(self, value: Any) -> bytes:
        try:
            return msgpack.packb(value, use_bin_type=True)
        except (TypeError, ValueError, OverflowError) as err:
            raise CodecError(f"cannot encode value as MessagePack: {err}") from err

    def decode(self, data: bytes) -> Any:
        try:
            return msgpack.unpackb(data, raw=False)
        except (msgpack.exceptions.UnpackException, ValueError, TypeError) as err:
            raise CodecError(f"invalid MessagePack payload: {err}") from err


_CODECS: dict[str, Codec] = {"json": JsonCodec(), "msgpack": MsgPackCodec()}


def get_codec(fmt: str) -> Codec:
    try:
        return _CODECS[fmt]
    except KeyError:
        raise CodecError(f"unknown format {fmt!r} (expected one of: {', '.join(_CODECS)})") from None
