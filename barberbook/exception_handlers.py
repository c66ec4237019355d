"""Map BookingError kinds and request validation failures to JSON responses"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import BookingError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        # Incidents are alerted where they happen, with the payment details
        if exc.status_code >= 500:
            logger.error(f"❌ {exc.kind.value} on {request.method} {request.url.path}: {exc.detail}")
        else:
            logger.warning(f"{exc.kind.value} on {request.method} {request.url.path}: {exc.message}")

        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        logger.warning(f"Validation error on {request.method} {request.url.path}: {errors}")

        # First readable message, e.g. "body.customer.phone: Phone number is required"
        message = "Request validation failed"
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            message = f"{location}: {first.get('msg', 'invalid value')}"

        return JSONResponse(
            status_code=422,
            content={"error": {"code": "validation_error", "message": message}},
        )
