"""Error taxonomy surfaced by EventBoard operations."""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class FieldError:
    field: str
    rule: str
    message: str


class EventBoardError(Exception):
    """Base class for errors reported back to the caller."""

    status_code = 500
    error = "InternalError"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.error, "detail": self.detail}


class Unauthenticated(EventBoardError):
    """Raised when no valid credential accompanies the request."""

    status_code = 401
    error = "Unauthenticated"


class Forbidden(EventBoardError):
    """Raised when the access policy denies the operation."""

    status_code = 403
    error = "Forbidden"


class NotFound(EventBoardError):
    """Raised when no record exists for the requested id."""

    status_code = 404
    error = "NotFound"


class ValidationError(EventBoardError):
    """Raised when field constraints or the date ordering are violated."""

    status_code = 422
    error = "ValidationError"

    def __init__(self, errors: list[FieldError], detail: str | None = None) -> None:
        super().__init__(detail or "; ".join(e.message for e in errors) or "Invalid data")
        self.errors = list(errors)

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors]

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["errors"] = [asdict(e) for e in self.errors]
        return payload


class InvalidParameter(EventBoardError):
    """Raised when pagination or filter parameters are malformed."""

    status_code = 400
    error = "InvalidParameter"

    def __init__(self, parameter: str, detail: str) -> None:
        super().__init__(detail)
        self.parameter = parameter

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["parameter"] = self.parameter
        return payload
