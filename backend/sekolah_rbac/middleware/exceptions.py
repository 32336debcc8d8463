"""Error types and handlers for the RBAC API.

Authorization *decisions* are never errors: the engine returns denied
AccessResults. The types below cover the API's own failures (missing
identity, admin routes the caller may not use, unknown or conflicting
custom roles, a store that refused a write). Every error leaves the API in
one envelope:

    {"error": {"code": "ROLE_EXISTS", "message": "...", "details": {...}}}
"""

import logging
import traceback

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class SekolahRBACException(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details
        super().__init__(message)


class AuthenticationRequiredError(SekolahRBACException):
    """No caller role was forwarded by the gateway."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "AUTHENTICATION_REQUIRED"

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class PermissionDeniedError(SekolahRBACException):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "PERMISSION_DENIED"

    def __init__(self, missing: list[str]):
        super().__init__(
            f"Missing permissions: {', '.join(missing)}",
            details={"missing_permissions": list(missing)},
        )


class ResourceNotFoundError(SekolahRBACException):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} not found: {identifier}")


class RoleConflictError(SekolahRBACException):
    status_code = status.HTTP_409_CONFLICT
    error_code = "ROLE_EXISTS"

    def __init__(self, role_id: str):
        super().__init__(f"Custom role already exists: {role_id}", details={"role_id": role_id})


class StorageUnavailableError(SekolahRBACException):
    """The backing store rejected a write; nothing was changed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "STORAGE_UNAVAILABLE"

    def __init__(self, action: str):
        super().__init__(f"Could not {action}: storage unavailable")


def error_response(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    body = {"code": code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


def _request_extra(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


# ── Handlers ────────────────────────────────────────────────

async def rbac_exception_handler(request: Request, exc: SekolahRBACException) -> JSONResponse:
    logger.warning(
        f"{exc.error_code}: {exc.message}",
        extra={"error_code": exc.error_code, **_request_extra(request)},
    )
    return error_response(exc.status_code, exc.error_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}", extra=_request_extra(request))
    return error_response(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError | ValidationError,
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.info(f"Rejected request body on {request.url.path}", extra=_request_extra(request))
    return error_response(422, "VALIDATION_ERROR", "Validation error", {"errors": errors})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}",
        extra={**_request_extra(request), "traceback": traceback.format_exc()},
        exc_info=True,
    )
    # Internal details stay in the log
    return error_response(500, "INTERNAL_SERVER_ERROR", "An unexpected error occurred.")


def register_exception_handlers(app) -> None:
    handlers = {
        SekolahRBACException: rbac_exception_handler,
        HTTPException: http_exception_handler,
        StarletteHTTPException: http_exception_handler,
        RequestValidationError: validation_exception_handler,
        ValidationError: validation_exception_handler,
        Exception: unhandled_exception_handler,
    }
    for exc_class, handler in handlers.items():
        app.add_exception_handler(exc_class, handler)
