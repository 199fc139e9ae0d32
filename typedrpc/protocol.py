"""
typedrpc.protocol
=================

Protocol descriptors and the validators compiled from them.

A protocol module lives under the configured protocol root and is named
``Ptl<Name>.py``. It declares the request and response shapes and one
module-level ``Protocol``:

    from pydantic import BaseModel
    from typedrpc import define_protocol

    class ReqHello(BaseModel):
        name: str | None = None

    class ResHello(BaseModel):
        reply: str

    PtlHello = define_protocol(req=ReqHello, res=ResHello)

``define_protocol`` records the calling module's file as the protocol's
declared location; the registry derives the URL from it.

Validators
----------
Any object with ``validate(value) -> ValidationResult`` satisfies the
validator contract. The default implementation wraps a pydantic
``TypeAdapter`` so request types may be models, TypedDicts, dataclasses or
plain typing constructs.
"""
from __future__ import annotations

import inspect
import threading
import typing as t
from dataclasses import dataclass
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

PROTOCOL_PREFIX = "Ptl"


@dataclass(frozen=True)
class Protocol:
    """Immutable description of one RPC contract."""

    name: str
    filename: str
    req: t.Any = t.Any
    res: t.Any = t.Any

    def __repr__(self) -> str:
        return f"Protocol({self.name!r}, filename={self.filename!r})"


def _caller_file(depth: int = 2) -> str:
    frame = inspect.currentframe()
    try:
        for _ in range(depth):
            if frame is None:
                break
            frame = frame.f_back
        filename = frame.f_globals.get("__file__") if frame is not None else None
    finally:
        del frame
    if not filename:
        raise ValueError("Cannot infer protocol filename; pass filename= explicitly")
    return str(filename)


def define_protocol(
    req: t.Any = t.Any,
    res: t.Any = t.Any,
    *,
    name: str | None = None,
    filename: str | None = None,
) -> Protocol:
    """
    Declare a protocol. ``filename`` defaults to the module calling this
    function; ``name`` defaults to the file stem without the ``Ptl`` prefix.
    """
    filename = filename or _caller_file()
    if name is None:
        stem = Path(filename).stem
        name = stem[len(PROTOCOL_PREFIX):] if stem.startswith(PROTOCOL_PREFIX) else stem
    return Protocol(name=name, filename=filename, req=req, res=res)


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationResult:
    is_error: bool
    field_name: str | None = None
    message: str | None = None

    @property
    def reason(self) -> str:
        if self.field_name:
            return f"{self.field_name}: {self.message}"
        return self.message or ""


VALID = ValidationResult(is_error=False)


@t.runtime_checkable
class Validator(t.Protocol):
    def validate(self, value: t.Any) -> ValidationResult:
        ...


class PydanticValidator:
    """Validator backed by a pydantic TypeAdapter built once per request type."""

    def __init__(self, type_: t.Any) -> None:
        self.type = type_
        self._adapter: TypeAdapter[t.Any] = TypeAdapter(type_)

    def validate(self, value: t.Any) -> ValidationResult:
        try:
            self._adapter.validate_python(value)
        except ValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(p) for p in first.get("loc", ()))
            return ValidationResult(is_error=True, field_name=loc or None, message=first.get("msg"))
        return VALID


_VALIDATORS: dict[int, tuple[t.Any, Validator]] = {}
_LOCK = threading.RLock()


def get_validator(protocol: Protocol) -> Validator:
    """
    Return the validator for ``protocol.req``, compiling it on first use.
    Validators are shared between protocols declaring the same type.
    """
    req = protocol.req
    with _LOCK:
        cached = _VALIDATORS.get(id(req))
        if cached is not None and cached[0] is req:
            return cached[1]
        validator = PydanticValidator(req)
        _VALIDATORS[id(req)] = (req, validator)
        return validator


__all__ = [
    "PROTOCOL_PREFIX",
    "Protocol",
    "define_protocol",
    "ValidationResult",
    "Validator",
    "PydanticValidator",
    "get_validator",
]
