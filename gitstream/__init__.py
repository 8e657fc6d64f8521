"""
GitStream
=========

Tier-based revenue distribution for open-source projects, settled through
ClearNode state-channel sessions.

Prefer importing submodules directly for specific concerns:
``gitstream.allocation`` (pure share math), ``gitstream.clearnode``
(settlement session client), ``gitstream.services`` (distribution workflow),
``gitstream.app`` (HTTP surface).
"""

from __future__ import annotations

from .version import __version__

__all__ = ["__version__", "build_app"]


def build_app():
    """
    Create and return a configured FastAPI application.

    Thin wrapper around :func:`gitstream.app.create_app`; imported lazily so
    the allocation engine stays importable without the web stack.
    """
    from .app import create_app

    return create_app()
