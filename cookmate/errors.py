"""Domain exceptions for the CookMate API.

Services raise these; ``cookmate.main`` maps them onto the JSON error
envelope ``{"status": ..., "message": ..., "errors": [...]}``.
"""

from typing import Optional


class CookMateError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    status = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"status": self.status, "message": self.message}


class ValidationError(CookMateError):
    """Malformed or missing input. Raised before any side effect."""

    status_code = 400
    status = "fail"

    def __init__(self, message: str = "Validation failed", errors: Optional[list[dict]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(errors=[{"field": field, "message": message}])

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["errors"] = self.errors
        return body


class AuthenticationError(CookMateError):
    status_code = 401
    status = "fail"


class Forbidden(CookMateError):
    status_code = 403
    status = "fail"


class NotFound(CookMateError):
    status_code = 404
    status = "fail"


class UpstreamProviderError(CookMateError):
    """AI vendor failure. Not retried at the orchestration layer."""

    status_code = 502

    def __init__(self, message: str, provider: Optional[str] = None):
        tagged = f"[{provider}] {message}" if provider else message
        super().__init__(tagged)
        self.provider = provider
