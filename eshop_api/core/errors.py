"""Typed failures shared by every layer of the API."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError


class ErrorKind(str, Enum):
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL_SERVER_ERROR: 500,
}


class ApiError(Exception):
    """Failure carrying a user-facing message and the kind used to pick the HTTP status."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.kind = ErrorKind(kind)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def __repr__(self) -> str:
        return f"<ApiError kind={self.kind.value} message={self.message!r}>"


@dataclass(frozen=True, slots=True)
class FieldError:
    field: str
    message: str

    def as_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class ValidationFailed(ApiError):
    """Collected validation failures for one request payload."""

    def __init__(self, errors: List[FieldError], message: Optional[str] = None) -> None:
        super().__init__(message or (errors[0].message if errors else "Validation failed"), ErrorKind.BAD_REQUEST)
        self.errors = list(errors)


class DuplicateKeyError(Exception):
    """Raised by the document store when a unique field already holds the value."""

    def __init__(self, collection: str, field: str) -> None:
        super().__init__(f"Duplicate value for {collection}.{field}")
        self.collection = collection
        self.field = field


class EmailDeliveryError(Exception):
    """Raised by an email sender when a message could not be handed to the transport."""


def field_errors_from(exc: PydanticValidationError) -> List[FieldError]:
    """Flatten a pydantic ValidationError into (field, message) pairs."""
    errors = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        message = item.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append(FieldError(location or "body", message))
    return errors
