"""
Error taxonomy shared by the pricing core, the order lifecycle and the HTTP layer.

Every error is an HTTPException so FastAPI can render it directly; the
handlers registered in main.py add the JSON envelope and the machine code.
"""
import asyncio
from typing import Any, Awaitable, List, Optional, TypeVar

from fastapi import HTTPException

from config import UPSTREAM_TIMEOUT_SECONDS

T = TypeVar("T")


class ApiError(HTTPException):
    status_code = 500
    error_code = "SERVER_ERROR"
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, error_code: Optional[str] = None,
                 errors: Optional[List[Any]] = None):
        self.message = message or self.default_message
        self.error_code = error_code or self.error_code
        self.errors = errors or []
        super().__init__(status_code=self.status_code, detail=self.message)

    def to_dict(self) -> dict:
        return {
            "statusCode": self.status_code,
            "message": self.message,
            "success": False,
            "errors": self.errors,
            "errorCode": self.error_code,
        }


class InvalidInput(ApiError):
    status_code = 400
    error_code = "INVALID_INPUT"
    default_message = "Invalid request"


class DiscountRejected(ApiError):
    status_code = 400
    error_code = "INVALID_DISCOUNT_CODE"

    def __init__(self, code: str, reason: str, message: str):
        self.code = code
        self.reason = reason
        super().__init__(message, errors=[{"code": code, "reason": reason}])


class Unauthorized(ApiError):
    status_code = 401
    error_code = "UNAUTHORIZED"
    default_message = "Authentication required"


class Forbidden(ApiError):
    status_code = 403
    error_code = "ADMIN_ACCESS_REQUIRED"
    default_message = "Admin access required"


class NotFound(ApiError):
    status_code = 404
    error_code = "NOT_FOUND"
    default_message = "Not found"


class InvalidSignature(ApiError):
    status_code = 400
    error_code = "INVALID_SIGNATURE"
    default_message = "Invalid payment signature"


class InvalidTransition(ApiError):
    status_code = 409
    error_code = "INVALID_STATUS_TRANSITION"


class UpstreamFailure(ApiError):
    status_code = 502
    error_code = "UPSTREAM_FAILURE"
    default_message = "Upstream service failed"


class UpstreamTimeout(UpstreamFailure):
    status_code = 504
    error_code = "UPSTREAM_TIMEOUT"
    default_message = "Upstream service timed out"


async def within_deadline(awaitable: Awaitable[T], operation: str,
                          timeout: float = UPSTREAM_TIMEOUT_SECONDS) -> T:
    """Await an I/O call, failing with UpstreamTimeout once the deadline passes."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        raise UpstreamTimeout(f"{operation} timed out after {timeout:g}s")
