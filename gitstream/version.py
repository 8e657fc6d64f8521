"""
Version helpers for GitStream.

- ``__version__`` is the semantic version for packaging.
- ``version()`` returns it with a git commit suffix when one is known.
"""

from __future__ import annotations

import os

# Bump this when making a release; use semver (MAJOR.MINOR.PATCH)
__version__ = "0.1.0"


def version() -> str:
    """Return ``__version__`` plus ``+g<sha>`` when $GIT_COMMIT is set (CI builds)."""
    commit = os.getenv("GIT_COMMIT") or os.getenv("BUILD_SHA")
    if not commit:
        return __version__
    return f"{__version__}+g{commit[:7]}"


__all__ = ["__version__", "version"]
