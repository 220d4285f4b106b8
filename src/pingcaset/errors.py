"""Domain error taxonomy.

Every failure in the core is scoped to the single operation that raised it.
The API layer maps these onto HTTP status codes (see middleware.error_handler).
"""

from __future__ import annotations


class PingCasetError(Exception):
    """Base class for all domain errors."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PingCasetError):
    """Malformed or out-of-range input (negative amounts, mines_today > 4, ...)."""

    status_code = 422


class StateConflictError(PingCasetError):
    """Invalid state transition: double claim, claim before completion, claim after expiry."""

    status_code = 409


class NotFoundError(PingCasetError):
    """Referenced profile, group, session or task does not exist."""

    status_code = 404


class TransientFetchError(PingCasetError):
    """Backend read failed; callers keep their previous view of the data."""

    status_code = 503
