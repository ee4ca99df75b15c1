"""
Domain errors for the Homes Rental API.

Services raise these; ``main.py`` renders them into the
``{"message": ..., "error": ...}`` response envelope.
"""

from typing import Optional


class DomainError(Exception):
    """Base class for every error a service may raise."""

    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message, "error": self.code}


class ValidationError(DomainError):
    """Missing or malformed input."""

    status_code = 400


class AuthError(DomainError):
    """The caller could not be authenticated."""

    status_code = 401


class ForbiddenError(DomainError):
    """The caller is authenticated but may not perform the action."""

    status_code = 403


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    """A unique field or one-time resource already exists."""

    status_code = 409


class DependencyError(DomainError):
    """An external collaborator (email) failed. Never fails the parent operation."""

    status_code = 502


class InternalError(DomainError):
    status_code = 500


# Shorthands for the codes used across services


def missing_fields(message: str = "All required fields must be provided") -> ValidationError:
    return ValidationError(message, "MissingFields")


def listing_not_found() -> NotFoundError:
    return NotFoundError("Home not found", "ListingNotFound")


def booking_not_found() -> NotFoundError:
    return NotFoundError("Booking not found", "BookingNotFound")


def user_not_found() -> NotFoundError:
    return NotFoundError("User not found", "UserNotFound")


def forbidden(message: str = "You do not have permission to perform this action") -> ForbiddenError:
    return ForbiddenError(message, "Forbidden")
