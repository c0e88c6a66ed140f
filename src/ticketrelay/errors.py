"""Domain error taxonomy.

Learn: Services raise these instead of HTTPException so the same code
paths work for REST routes and the WebSocket event channel. main.py maps
each one to its status code with a stable `{"error": "..."}` body.
"""


class TicketRelayError(Exception):
    """Base class for all expected failures."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TicketRelayError):
    """Missing or malformed input."""

    status_code = 400


class AuthError(TicketRelayError):
    """Missing, invalid or expired token, or bad credentials."""

    status_code = 401


class ForbiddenError(TicketRelayError):
    """Authenticated, but the role is not allowed to do this."""

    status_code = 403


class NotFoundError(TicketRelayError):
    status_code = 404


class ConflictError(TicketRelayError):
    """Uniqueness violation (duplicate username)."""

    status_code = 400


class StoreError(TicketRelayError):
    """Any persistence failure."""

    status_code = 500
