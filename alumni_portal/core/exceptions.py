"""Error taxonomy shared by the REST layer and the realtime relay.

Services raise these; the DRF exception handler and the socket dispatcher turn
them into a failure envelope for the caller.
"""

from __future__ import annotations

from rest_framework import status


class RelayError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"
    default_message = "Request failed."

    def __init__(self, message: str | None = None, *, errors: list[str] | None = None):
        self.message = message or self.default_message
        self.errors = list(errors or [])
        super().__init__(self.message)


class ValidationError(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    default_message = "Invalid input."


class AuthError(RelayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"
    default_message = "Authentication failed."


class ForbiddenError(RelayError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "Access denied."


class NotFoundError(RelayError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Not found."


class TransientError(RelayError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "transient_error"
    default_message = "Temporary failure, please retry."
