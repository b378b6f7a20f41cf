"""
Application error taxonomy

Services raise these; the handlers registered in main.py turn them into the
{"success": false, "error": {"message": ...}} response envelope.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors surfaced to API callers"""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidArgument(AppError):
    status_code = 400


class Unauthorized(AppError):
    status_code = 401


class Forbidden(AppError):
    status_code = 403


class NotFound(AppError):
    status_code = 404


class GatewayError(AppError):
    """Payment provider call failed or answered with a non-success envelope"""

    status_code = 502

    def __init__(self, message: str, gateway_status: Optional[int] = None):
        super().__init__(message)
        self.gateway_status = gateway_status


class InternalError(AppError):
    status_code = 500


def error_body(message: str) -> dict:
    return {"success": False, "error": {"message": message}}


def register_exception_handlers(app: FastAPI) -> None:
    """Install the envelope-producing handlers on the app"""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"❌ {request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        if field:
            message = f"{field}: {message}"
        logger.warning(f"⚠️ Validation failed for {request.url.path}: {message}")
        return JSONResponse(status_code=400, content=error_body(message))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content=error_body("Internal server error"))
