"""Middleware and exception mapping for the API.

Domain errors map to HTTP statuses here so route handlers stay free of
status-code logic:

    WriteRejectedError          -> 400 with one entry per offending field
    PatientNotFoundError        -> 404
    StorageError                -> 503
    EncodingInvariantViolation  -> 500 with a generic body

A corrupted stored field is never an error at this level: the guard has
already substituted its default.
"""

import logging
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from recordguard.api.models.patients import WriteRejectedResponse
from recordguard.domain.ports import (
    EncodingInvariantViolation,
    PatientNotFoundError,
    StorageError,
    WriteRejectedError,
)

logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with its status and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        client = request.client.host if request.client else "unknown"
        logger.info(f"{request.method} {request.url.path} - Client: {client}")

        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.3f}"
        logger.info(
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - "
            f"Time: {process_time:.3f}s"
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns any unhandled exception into a generic 500."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unexpected error: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal server error",
                    "detail": "An unexpected error occurred. Please check logs for details."
                }
            )


async def write_rejected_handler(request: Request, exc: WriteRejectedError) -> JSONResponse:
    body = WriteRejectedResponse(
        detail=str(exc),
        fields=exc.fields,
        errors=[error.to_dict() for error in exc.errors],
    )
    return JSONResponse(status_code=400, content=body.model_dump())


async def patient_not_found_handler(request: Request, exc: PatientNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "Not Found", "detail": str(exc)})


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"Storage error during {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "Service Unavailable", "detail": "Patient storage is unavailable"}
    )


async def encoding_violation_handler(request: Request, exc: EncodingInvariantViolation) -> JSONResponse:
    logger.critical(f"Encoding invariant violated during {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": "Clinical data could not be stored safely"}
    )


def setup_middleware(app: FastAPI) -> None:
    """Register middleware and domain exception handlers.

    Middleware Order:
        1. ErrorHandlingMiddleware - Handles errors
        2. LoggingMiddleware - Logs requests/responses
    """
    app.add_exception_handler(WriteRejectedError, write_rejected_handler)
    app.add_exception_handler(PatientNotFoundError, patient_not_found_handler)
    app.add_exception_handler(StorageError, storage_error_handler)
    app.add_exception_handler(EncodingInvariantViolation, encoding_violation_handler)

    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(LoggingMiddleware)
