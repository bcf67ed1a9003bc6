"""Domain errors surfaced to API clients with a stable status code."""

from typing import Any


class HelpdeskError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str, *, detail: Any = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message}
        if self.detail is not None:
            payload["errors"] = self.detail
        return payload


class ValidationError(HelpdeskError):
    """Input failed validation; `detail` lists the offending fields."""

    status_code = 400


class InvalidAddress(ValidationError):
    """Email address has no usable domain part."""


class UnauthorizedError(HelpdeskError):
    status_code = 401


class NotFoundError(HelpdeskError):
    status_code = 404


class ConflictError(HelpdeskError):
    """Concurrent write lost a race; safe to retry."""

    status_code = 409


class ExternalProviderError(HelpdeskError):
    """Mailbox or notification provider is unreachable or rejected the call."""

    status_code = 502
