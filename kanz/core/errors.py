"""Typed errors raised by the core and rendered at the request boundary."""

from __future__ import annotations

from typing import Any, Dict, Optional


class KanzError(Exception):
    """Base exception carrying a machine-checkable code and HTTP status."""

    code = "error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        body.update(self.details)
        return body

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class Unauthenticated(KanzError):
    """Missing or invalid bearer credential."""

    code = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Not authenticated", **kwargs: Any):
        super().__init__(message, **kwargs)


class NotFound(KanzError):
    """Absent resource, or one owned by someone else."""

    code = "not_found"
    status_code = 404

    def __init__(self, message: str = "Not found", **kwargs: Any):
        super().__init__(message, **kwargs)


class InvalidInput(KanzError):
    code = "invalid_input"
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None, **kwargs: Any):
        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)
        self.field = field


class InvalidState(KanzError):
    """Operation attempted in the wrong lifecycle state."""

    code = "invalid_state"
    status_code = 400

    def __init__(self, message: str, *, status: str, required: Any, **kwargs: Any):
        required_list = sorted(required) if isinstance(required, (set, frozenset, list, tuple)) else [required]
        super().__init__(message, details={"status": status, "required": required_list}, **kwargs)
        self.status = status
        self.required = required_list


class UnsupportedRoute(KanzError):
    code = "unsupported_route"
    status_code = 400


class Conflict(KanzError):
    """A concurrent writer moved the record before this transition landed."""

    code = "conflict"
    status_code = 409


class NotConfigured(KanzError):
    code = "not_configured"
    status_code = 503


class UpstreamFailure(KanzError):
    """Aggregator or custody provider returned an error."""

    code = "upstream_failure"
    status_code = 502

    def __init__(self, message: str, *, code: str, detail: Optional[str] = None, **kwargs: Any):
        details = kwargs.pop("details", None) or {}
        if detail is not None:
            details["detail"] = detail
        super().__init__(message, code=code, details=details, **kwargs)
        self.detail = detail


__all__ = [
    "Conflict",
    "InvalidInput",
    "InvalidState",
    "KanzError",
    "NotConfigured",
    "NotFound",
    "Unauthenticated",
    "UnsupportedRoute",
    "UpstreamFailure",
]
