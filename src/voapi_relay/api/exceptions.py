from typing import Optional

import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger("api")


class RelayServiceException(Exception):
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class AuthorizationError(RelayServiceException):
    def __init__(self, message: str = "Unauthorized: Invalid API key"):
        super().__init__(message, status_code=401)


class UpstreamError(RelayServiceException):
    """The upstream panel answered, but with an error body."""

    def __init__(self, stage: str, detail: str, message: Optional[str] = None):
        self.stage = stage
        self.detail = detail
        super().__init__(message or f"API Error: {detail}")


class UpstreamUnreachable(RelayServiceException):
    """The request went out but no response came back."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(message)


class UpstreamClientError(RelayServiceException):
    """The request to the upstream panel could not be built or sent."""

    def __init__(self, stage: str, detail: str, message: Optional[str] = None):
        self.stage = stage
        self.detail = detail
        super().__init__(message or f"Error: {detail}")


class NoSessionCookies(RelayServiceException):
    def __init__(self, message: str = "Login Error: No session cookies received from login response."):
        super().__init__(message)


class MissingTokenKey(RelayServiceException):
    def __init__(self, message: str = "Token created but no token key could be found in the creation or listing response."):
        super().__init__(message)


class PersistenceError(RelayServiceException):
    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Database Error while trying to {operation}: {detail}")


def error_body(message: str) -> dict:
    return {"success": False, "error": message}


async def relay_service_exception_handler(request: Request, exc: RelayServiceException):
    logger.error(
        "Relay service exception",
        error=exc.message,
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        path=request.url.path
    )
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    violations = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        violations.append({
            "field": ".".join(location) or "body",
            "message": error.get("msg", "Invalid value"),
            "type": error.get("type", "value_error"),
        })

    logger.info("Rejected invalid request body", path=request.url.path, violations=len(violations))
    content = error_body("Invalid request body")
    content["errors"] = violations
    return JSONResponse(status_code=400, content=content)


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        path=request.url.path,
        exc_info=True
    )
    return JSONResponse(status_code=500, content=error_body("Internal server error"))
