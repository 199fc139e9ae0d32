"""
Request/response objects passed through the pipeline, and the wire envelope.

Envelope (JSON shown; CBOR carries the same structure):

    success: {"isSucc": true,  "res": <payload>}
    error:   {"isSucc": false, "error": {"message": "...", "info": <any>}}

`ApiResponse` is the envelope writer. Exactly one of `succ()` / `error()`
takes effect per response: the first write wins, later writes are logged and
ignored. Handlers may write before returning or later from a callback; the
transport awaits `ApiResponse.wait()`.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .codec import TextCodec, BinaryCodec, to_plain
from .errors import PreCheckError
from .protocol import Protocol, ValidationResult
from .registry import Registration

log = logging.getLogger("typedrpc.response")

# -----------------------------------------------------------------------------
# Envelopes
# -----------------------------------------------------------------------------


class ErrorBody(BaseModel):
    model_config = ConfigDict(frozen=True)
    message: str
    info: Optional[Any] = None


class SuccEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)
    is_succ: Literal[True] = Field(True, alias="isSucc")
    res: Optional[Any] = None


class ErrorEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)
    is_succ: Literal[False] = Field(False, alias="isSucc")
    error: ErrorBody


Envelope = Union[SuccEnvelope, ErrorEnvelope]

_ENVELOPE_ADAPTER: TypeAdapter[Envelope] = TypeAdapter(
    Union[SuccEnvelope, ErrorEnvelope]  # type: ignore[arg-type]
)


def parse_envelope(data: Any) -> Envelope:
    """Client-side helper: turn a decoded response body into an envelope model."""
    return _ENVELOPE_ADAPTER.validate_python(data)


# -----------------------------------------------------------------------------
# Incoming request
# -----------------------------------------------------------------------------


def _new_req_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class ApiRequest:
    """
    One inbound call. Fields after `raw_body` are filled in by pipeline stages;
    each is only present once the stage producing it has succeeded.
    """

    method: str
    path: str
    headers: Dict[str, str]
    raw_body: bytes = b""
    client: Optional[Tuple[str, int]] = None
    req_id: str = field(default_factory=_new_req_id)
    received_at: float = field(default_factory=time.perf_counter)

    args: Any = None
    decode_failed: bool = False
    rpc_path: Optional[str] = None
    registration: Optional[Registration] = None
    pre_check_error: Optional[PreCheckError] = None
    validation: Optional[ValidationResult] = None
    server: Any = None

    @property
    def protocol(self) -> Optional[Protocol]:
        return self.registration.protocol if self.registration is not None else None

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def is_multipart(self) -> bool:
        return self.content_type.startswith("multipart/form-data")

    @property
    def real_ip(self) -> str:
        xff = self.headers.get("x-forwarded-for")
        if xff:
            return xff.split(",")[0].strip()
        return self.client[0] if self.client else "-"


# -----------------------------------------------------------------------------
# Outgoing response
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class HttpResult:
    """What the transport sends back."""

    status_code: int
    body: bytes
    media_type: str
    headers: Dict[str, str] = field(default_factory=dict)


class ApiResponse:
    def __init__(
        self,
        codec: Union[TextCodec, BinaryCodec, None] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.codec = codec or TextCodec()
        self.status_code = 200
        self.headers: Dict[str, str] = {}
        self.server: Any = None
        self._envelope: Optional[Envelope] = None
        self._sent = asyncio.Event()
        self._log = logger or log

    @property
    def is_sent(self) -> bool:
        return self._envelope is not None

    @property
    def envelope(self) -> Optional[Envelope]:
        return self._envelope

    @property
    def is_succ(self) -> Optional[bool]:
        return None if self._envelope is None else self._envelope.is_succ

    def _write(self, envelope: Envelope) -> bool:
        if self._envelope is not None:
            self._log.warning(
                "Response already sent, ignoring %s", "succ()" if envelope.is_succ else "error()"
            )
            return False
        self._envelope = envelope
        self._sent.set()
        return True

    def succ(self, res: Any = None) -> bool:
        return self._write(SuccEnvelope(res=to_plain(res)))

    def error(self, message: str, info: Any = None, *, status_code: Optional[int] = None) -> bool:
        written = self._write(ErrorEnvelope(error=ErrorBody(message=str(message), info=to_plain(info))))
        if written and status_code is not None:
            self.status_code = status_code
        return written

    async def wait(self) -> Envelope:
        await self._sent.wait()
        assert self._envelope is not None
        return self._envelope

    def render(self) -> HttpResult:
        if self._envelope is None:
            raise RuntimeError("response has not been written")
        body = self.codec.encode(self._envelope.model_dump(by_alias=True))
        return HttpResult(
            status_code=self.status_code,
            body=body,
            media_type=self.codec.media_type,
            headers=dict(self.headers),
        )


__all__ = [
    "ErrorBody",
    "SuccEnvelope",
    "ErrorEnvelope",
    "Envelope",
    "parse_envelope",
    "ApiRequest",
    "ApiResponse",
    "HttpResult",
]
