# Typed failures raised by the session managers and the HTTP handlers
# that map them to stable (code, status) pairs.

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

NEW_CODE_HINT = "Please generate a new code on your device."


class DeviceLinkError(Exception):
    """Base error. Every subclass carries its wire code and HTTP status."""
    code = "error"
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(DeviceLinkError):
    code = "validation_error"
    status_code = 400


class NotFoundError(DeviceLinkError):
    code = "not_found"
    status_code = 404


class ExpiredError(DeviceLinkError):
    code = "expired"
    status_code = 401


class ConflictError(DeviceLinkError):
    code = "conflict"
    status_code = 409


class AuthorizationError(DeviceLinkError):
    code = "unauthorized"
    status_code = 401


class UpstreamError(DeviceLinkError):
    code = "upstream_error"
    status_code = 500


def error_body(code: str, message: str) -> dict:
    return {"success": False, "error": message, "code": code}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DeviceLinkError)
    async def _device_link_error(request: Request, exc: DeviceLinkError):
        if isinstance(exc, UpstreamError):
            # Detail was already logged where the storage call failed
            message = "Service temporarily unavailable"
        else:
            message = exc.message
        logger.info("Request failed: path=%s code=%s status=%s", request.url.path, exc.code, exc.status_code)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, message))

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg', 'invalid value')}" if field else "Invalid request"
        return JSONResponse(status_code=400, content=error_body(ValidationError.code, message))
