"""
Error handlers: map forget-spine errors to RFC 7807 responses.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from forget_spine.api.schemas import ProblemDetail
from forget_spine.core.errors import ErrorCategory, ForgetError, ValidationError
from forget_spine.core.logging import get_logger

logger = get_logger(__name__)

CATEGORY_TO_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.STORAGE: 503,
    ErrorCategory.PARSE: 500,
    ErrorCategory.CONFIG: 500,
    ErrorCategory.INTERNAL: 500,
}


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    code: str | None = None,
    param: str | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(
        title=title,
        status=status,
        detail=detail,
        instance=instance,
        code=code,
        param=param,
    )
    return JSONResponse(status_code=status, content=body.model_dump(exclude_none=True))


async def forget_error_handler(request: Request, exc: ForgetError) -> JSONResponse:
    """Validation errors are echoed; store failures get a generic message."""
    status = CATEGORY_TO_STATUS.get(exc.category, 500)
    if isinstance(exc, ValidationError):
        return problem_response(
            status=status,
            title="Invalid request",
            detail=exc.message,
            instance=str(request.url),
            code=exc.category.value,
            param=exc.param,
        )

    logger.error("request_failed", path=request.url.path, **exc.to_dict())
    return problem_response(
        status=status,
        title="Service Unavailable" if status == 503 else "Request failed",
        detail="Backing store request failed." if status == 503 else exc.message,
        instance=str(request.url),
        code=exc.category.value,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Type-parsing failures (``N=abc``, ``rate=fast``) answer 400 like other bad input."""
    first = exc.errors()[0] if exc.errors() else {}
    loc = first.get("loc") or ()
    param = str(loc[-1]) if loc else None
    return problem_response(
        status=400,
        title="Invalid request",
        detail=first.get("msg", "Invalid request parameters"),
        instance=str(request.url),
        code=ErrorCategory.VALIDATION.value,
        param=param,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: returns 500 with ProblemDetail."""
    logger.error("unhandled_exception", path=request.url.path, error=str(exc))
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail="An unexpected error occurred.",
        instance=str(request.url),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ForgetError, forget_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
