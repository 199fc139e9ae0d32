"""
Filesystem auto-registration.

Pairs every ``Ptl<Name>.py`` below the protocol root with ``Api<Name>.py`` at
the same relative location below the api root:

    protocol/user/PtlLogin.py  ->  api/user/ApiLogin.py  (callable ApiLogin)

The handler is the module attribute ``Api<Name>``, falling back to ``main``
and then ``handler``. Problems are collected across the whole tree and raised
together as one ``AutoImplementError``.
"""
from __future__ import annotations

import importlib.util
import logging
import sys
import typing as t
from pathlib import Path
from types import ModuleType

from .errors import AutoImplementError
from .paths import _source_filename
from .protocol import PROTOCOL_PREFIX, Protocol

log = logging.getLogger("typedrpc.autoimpl")

API_PREFIX = "Api"
HANDLER_FALLBACKS = ("main", "handler")


def _import_file(path: Path, namespace: str, root: Path) -> ModuleType:
    rel = path.relative_to(root).with_suffix("")
    name = ".".join(("_typedrpc_auto", namespace) + rel.parts)
    spec = importlib.util.spec_from_file_location(name, str(path))
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(name, None)
        raise
    return module


def _same_file(a: str, b: Path) -> bool:
    try:
        return Path(_source_filename(a)).resolve() == b.resolve()
    except OSError:
        return False


def find_protocol(module: ModuleType, path: Path) -> Protocol | None:
    """The module-level Protocol declared by ``path``; ``Ptl<Name>`` preferred."""
    preferred = getattr(module, path.stem, None)
    if isinstance(preferred, Protocol) and _same_file(preferred.filename, path):
        return preferred
    for value in vars(module).values():
        if isinstance(value, Protocol) and _same_file(value.filename, path):
            return value
    return None


def find_handler(module: ModuleType, name: str) -> t.Callable[..., t.Any] | None:
    for attr in (API_PREFIX + name,) + HANDLER_FALLBACKS:
        fn = getattr(module, attr, None)
        if callable(fn):
            return fn
    return None


def iter_protocol_files(protocol_path: str) -> t.Iterator[Path]:
    root = Path(protocol_path)
    for p in sorted(root.rglob(PROTOCOL_PREFIX + "*.py")):
        if p.is_file() and len(p.stem) > len(PROTOCOL_PREFIX):
            yield p


def auto_implement(server: t.Any, protocol_path: str, api_path: str) -> int:
    """
    Register a handler for every protocol file found. Returns the number
    registered; raises AutoImplementError listing every problem otherwise.
    """
    proto_root = Path(protocol_path)
    api_root = Path(api_path)
    if not proto_root.is_dir():
        raise AutoImplementError([f"Protocol path is not a directory: {proto_root}"])

    problems: list[str] = []
    pairs: list[tuple[Protocol, t.Callable[..., t.Any]]] = []

    for ptl_file in iter_protocol_files(protocol_path):
        rel = ptl_file.relative_to(proto_root)
        name = ptl_file.stem[len(PROTOCOL_PREFIX):]

        try:
            ptl_module = _import_file(ptl_file, "protocol", proto_root)
        except Exception as e:
            problems.append(f"Cannot import protocol {rel}: {e}")
            continue
        protocol = find_protocol(ptl_module, ptl_file)
        if protocol is None:
            problems.append(f"No Protocol declared in {rel}")
            continue

        api_file = api_root / rel.parent / f"{API_PREFIX}{name}.py"
        if not api_file.is_file():
            problems.append(f"Api not found: {api_file}")
            continue
        try:
            api_module = _import_file(api_file, "api", api_root)
        except Exception as e:
            problems.append(f"Cannot import api {api_file.relative_to(api_root)}: {e}")
            continue
        handler = find_handler(api_module, name)
        if handler is None:
            problems.append(f"Missing handler {API_PREFIX}{name} in {api_file}")
            continue
        pairs.append((protocol, handler))

    if problems:
        raise AutoImplementError(problems)

    for protocol, handler in pairs:
        server.implement(protocol, handler)
    log.debug("auto implemented %d protocols from %s", len(pairs), proto_root)
    return len(pairs)


__all__ = ["auto_implement", "find_protocol", "find_handler", "iter_protocol_files"]
