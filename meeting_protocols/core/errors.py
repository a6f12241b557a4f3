"""
Service Errors

Error taxonomy shared by the protocol engine, the task surface and the HTTP
layer. Every error carries the HTTP status it maps to.
"""

from typing import Any


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""

    status_code: int = 500

    def __init__(self, message: str, details: Any | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError):
    """A required field is missing or malformed."""

    status_code = 400


class AccessDenied(ServiceError):
    """The caller may not touch an entity of another group."""

    status_code = 403


class NotFoundError(ServiceError):
    """The addressed entity does not exist."""

    status_code = 404


class InvalidState(ServiceError):
    """The operation does not fit the current lifecycle state."""

    status_code = 400


class SectionLocked(InvalidState):
    """The targeted section is in the protocol's locked set."""


class AlreadyFinalized(InvalidState):
    """The protocol has been finalized before."""


class DerivationFailure(ServiceError):
    """Creating tasks from a finalized protocol failed."""
