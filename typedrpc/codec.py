"""
Body codecs.

Two encodings are supported, selected by ``ServerConfig.binary_transport``:

- TextCodec   (default): UTF-8 JSON, compact separators.
- BinaryCodec:           CBOR via ``cbor2``.

Both decode a request body into a plain value (an empty body decodes to an
empty mapping) and encode envelopes back to bytes. Pydantic models and
dataclasses inside a payload are converted to plain types before encoding.
"""
from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any

import cbor2
from pydantic import BaseModel


class CodecError(ValueError):
    """Raised when a body cannot be decoded."""


def to_plain(obj: Any) -> Any:
    """Convert models/dataclasses/enums (recursively) to JSON/CBOR friendly values."""
    if obj is None or isinstance(obj, (bool, int, float, str, bytes)):
        return obj
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj) and not isinstance(obj, type):
        return {k: to_plain(v) for k, v in asdict(obj).items()}
    if isinstance(obj, dict):
        return {str(k): to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_plain(x) for x in obj]
    if isinstance(obj, (bytearray, memoryview)):
        return bytes(obj)
    return obj


class TextCodec:
    media_type = "application/json"

    def decode(self, body: bytes) -> Any:
        if not body or not body.strip():
            return {}
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
            raise CodecError(f"malformed JSON: {e}") from e

    def encode(self, obj: Any) -> bytes:
        return json.dumps(
            to_plain(obj), separators=(",", ":"), ensure_ascii=False, default=_json_default
        ).encode("utf-8")


class BinaryCodec:
    media_type = "application/cbor"

    def decode(self, body: bytes) -> Any:
        if not body:
            return {}
        try:
            return cbor2.loads(body)
        except (cbor2.CBORDecodeError, ValueError, EOFError, RecursionError) as e:
            raise CodecError(f"malformed CBOR: {e}") from e

    def encode(self, obj: Any) -> bytes:
        return cbor2.dumps(to_plain(obj))


def _json_default(obj: Any) -> Any:
    if isinstance(obj, bytes):
        return "0x" + obj.hex()
    return str(obj)


def codec_for(binary_transport: bool) -> TextCodec | BinaryCodec:
    return BinaryCodec() if binary_transport else TextCodec()


__all__ = ["CodecError", "TextCodec", "BinaryCodec", "codec_for", "to_plain"]
