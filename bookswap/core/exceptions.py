"""
Error taxonomy for the swap domain.

Services raise these; the HTTP layer renders them through a single handler
so every rejected operation reaches the client as a structured reason
instead of a raw store error.
"""
from fastapi import status


class BookSwapError(Exception):
    """Base class for all domain errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"
    retryable: bool = False

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code, "retryable": self.retryable}


class AuthRequired(BookSwapError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "auth_required"


class Forbidden(BookSwapError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class NotFound(BookSwapError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class InvalidRequest(BookSwapError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_request"


class InvalidState(BookSwapError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_state"


class StoreUnavailable(BookSwapError):
    """Timeout or connectivity failure. Safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "store_unavailable"
    retryable = True


class StoreError(BookSwapError):
    """The store rejected a request for a reason retrying will not fix."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "store_error"


def require_actor(actor_id):
    """Return actor_id, or raise AuthRequired when there is no signed-in user."""
    if not actor_id:
        raise AuthRequired("You must be signed in to do this")
    return actor_id
