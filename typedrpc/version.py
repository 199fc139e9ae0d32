"""
typedrpc version.

- __version__: semantic version of the package, reported by the app factory
  and the ``--version`` CLI flag.
"""
from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
