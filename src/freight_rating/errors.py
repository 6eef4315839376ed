"""Error taxonomy shared by the resolvers, calculators and the HTTP layer."""
from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "RatingError",
    "InvalidArgument",
    "NotFound",
    "Unimplemented",
    "InternalError",
]


class RatingError(Exception):
    """Base class for every failure raised by the rating engine."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidArgument(RatingError):
    """A required shipment, carrier or break-set field is missing or malformed."""

    code = "invalid_argument"
    status_code = 422


class NotFound(RatingError):
    """Every lookup level was exhausted without a match."""

    code = "not_found"
    status_code = 404


class Unimplemented(RatingError):
    """The requested rate format has no defined calculation."""

    code = "unimplemented"
    status_code = 501


class InternalError(RatingError):
    """The backing document store failed unexpectedly."""

    code = "internal"
    status_code = 500
