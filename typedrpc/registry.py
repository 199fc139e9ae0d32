"""
typedrpc.registry
=================

Canonical RPC path → {protocol, handler, validator}.

- Paths come from ``paths.protocol_url``; a protocol outside the protocol root
  fails at registration time.
- At most one handler per path: registering the same path again logs a
  warning and replaces the previous entry.
- Lookups are exact dict hits, no prefix or wildcard matching.

Registration happens at startup, before requests are served; lookups after
that are read-only.
"""
from __future__ import annotations

import logging
import typing as t
from dataclasses import dataclass

from .paths import protocol_url
from .protocol import Protocol, Validator, get_validator

log = logging.getLogger("typedrpc.registry")

Handler = t.Callable[..., t.Any]


@dataclass(frozen=True)
class Registration:
    path: str
    protocol: Protocol
    handler: Handler
    validator: Validator


class ProtocolRegistry:
    def __init__(self, protocol_path: str, *, logger: logging.Logger | None = None) -> None:
        self.protocol_path = protocol_path
        self._entries: dict[str, Registration] = {}
        self._log = logger or log

    def url_of(self, protocol: Protocol) -> str:
        return protocol_url(protocol.filename, self.protocol_path)

    def register(
        self,
        protocol: Protocol,
        handler: Handler,
        *,
        validator: Validator | None = None,
    ) -> Registration:
        if not callable(handler):
            raise TypeError(f"Handler for {protocol.name!r} is not callable: {handler!r}")

        path = self.url_of(protocol)
        if path in self._entries:
            self._log.warning(
                "You are implementing a duplicated protocol: %s url=%s", protocol.filename, path
            )

        entry = Registration(
            path=path,
            protocol=protocol,
            handler=handler,
            validator=validator or get_validator(protocol),
        )
        self._entries[path] = entry
        self._log.info("Protocol registered succ: %s %s", path, protocol.filename)
        return entry

    def lookup(self, path: str | None) -> Registration | None:
        if not path:
            return None
        return self._entries.get(path)

    @property
    def paths(self) -> list[str]:
        return sorted(self._entries.keys())

    def clear(self) -> None:
        """Testing helper: drop every registration."""
        self._entries.clear()

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> t.Iterator[Registration]:
        return iter(list(self._entries.values()))


__all__ = ["Handler", "Registration", "ProtocolRegistry"]
