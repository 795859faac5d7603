"""
Engine error taxonomy.

Every error is an HTTPException so routes can let it propagate untouched;
``detail`` always carries a machine-readable ``error`` code next to the
human message and any context (precondition name, ids, amounts).
"""

from fastapi import HTTPException, status


class EngineError(HTTPException):
    code = "engine_error"
    http_status = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str, **context):
        self.message = message
        self.context = context
        detail = {"error": self.code, "message": message}
        detail.update(context)
        headers = {"Retry-After": "1"} if self.retryable else None
        super().__init__(status_code=self.http_status, detail=detail, headers=headers)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotFound(EngineError):
    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class InvalidState(EngineError):
    code = "invalid_state"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, message: str, *, precondition: str, **context):
        super().__init__(message, precondition=precondition, **context)
        self.precondition = precondition


class BelowMinimum(EngineError):
    code = "below_minimum"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class InsufficientBalance(EngineError):
    code = "insufficient_balance"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidDestination(EngineError):
    code = "invalid_destination"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class AlreadyResolved(EngineError):
    code = "already_resolved"
    http_status = status.HTTP_409_CONFLICT


class Conflict(EngineError):
    code = "conflict"
    http_status = status.HTTP_409_CONFLICT


class StoreUnavailable(EngineError):
    code = "store_unavailable"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class PayoutProviderError(EngineError):
    code = "payout_provider_error"
    http_status = status.HTTP_502_BAD_GATEWAY
    retryable = True
