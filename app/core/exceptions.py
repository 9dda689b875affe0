"""
Domain errors raised by the pricing, reservation and payment services.

Routes let them propagate; ``register_exception_handlers`` turns each one
into a JSON response with the status code it declares.
"""
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class BookingError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(BookingError):
    status_code = status.HTTP_409_CONFLICT


class InvalidStateTransition(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class SignatureInvalid(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class ProviderError(BookingError):
    """Payment provider failed or timed out. Safe to retry."""

    status_code = status.HTTP_502_BAD_GATEWAY


class ValidationFailed(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidInterval(ValidationFailed):
    pass


class NoCompletedPayment(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class PermissionDenied(BookingError):
    status_code = status.HTTP_403_FORBIDDEN


class WebhookProcessingFailed(BookingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self):
        super().__init__("Webhook processing failed")


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})
