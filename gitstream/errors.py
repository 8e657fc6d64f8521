from __future__ import annotations

"""
Error hierarchy for GitStream.

Every failure surfaced by the allocation engine, the ClearNode client or the
distribution service is a :class:`GitStreamError` so callers can catch one
base type while still branching on a machine-readable ``kind``.

Design
------
- Every error has:
  - ``message`` (str): human-friendly summary
  - ``kind`` (str): stable machine code (e.g., "validation_error")
  - ``status_code`` (int): HTTP status the API layer maps it to
  - ``details`` (dict|None): optional structured diagnostics
- ``to_problem()`` returns an RFC 7807 dict.

The errors are framework-agnostic; :mod:`gitstream.middleware.errors`
turns them into problem+json responses.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

DEFAULT_ERROR_DOCS_BASE = "https://docs.gitstream.dev/errors"


@dataclass(eq=False)
class GitStreamError(Exception):
    message: str
    kind: str = "server_error"
    status_code: int = 500
    details: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def title(self) -> str:
        return {
            "validation_error": "Validation Failed",
            "conflict": "Conflict",
            "network_error": "Settlement Network Error",
            "timeout": "Settlement Network Timeout",
            "authentication_error": "Authentication Failed",
            "not_found": "Not Found",
            "server_error": "Internal Server Error",
        }.get(self.kind, "Error")

    def to_problem(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "type": f"{DEFAULT_ERROR_DOCS_BASE}#{self.kind}",
            "title": self.title(),
            "status": self.status_code,
            "code": self.kind,
            "detail": self.message,
        }
        if self.details:
            body["details"] = dict(self.details)
        return body


# ------------------------------ Concrete types ------------------------------- #


class ValidationError(GitStreamError):
    """Malformed tier config, bad percentages, nothing to distribute."""

    def __init__(self, message: str = "Validation failed", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, kind="validation_error", status_code=400, details=details)


class ConflictError(GitStreamError):
    def __init__(self, message: str = "Resource already exists", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, kind="conflict", status_code=409, details=details)


class NetworkError(GitStreamError):
    """Transport failure or an error frame returned by the settlement network."""

    def __init__(
        self,
        message: str = "Settlement network error",
        *,
        details: Optional[Mapping[str, Any]] = None,
        kind: str = "network_error",
        status_code: int = 502,
    ):
        super().__init__(message=message, kind=kind, status_code=status_code, details=details)


class RequestTimeout(NetworkError):
    def __init__(self, message: str = "Request timeout", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message, details=details, kind="timeout", status_code=504)


class AuthenticationError(GitStreamError):
    """Challenge signature rejected or auth session expired."""

    def __init__(self, message: str = "Authentication failed", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, kind="authentication_error", status_code=401, details=details)


class NotFoundError(GitStreamError):
    def __init__(self, what: str = "Resource", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=f"{what} not found", kind="not_found", status_code=404, details=details)


__all__ = [
    "GitStreamError",
    "ValidationError",
    "ConflictError",
    "NetworkError",
    "RequestTimeout",
    "AuthenticationError",
    "NotFoundError",
]
