"""
Exception handlers.

Every failure leaves the API as {"success": false, "message": ...}. Service
errors map to a status code by their ErrorKind; anything unclassified is a
500 with a generic message and the traceback goes to the log only.
"""
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import STATUS_BY_KIND, ErrorKind, ServiceError


log = structlog.get_logger(__name__)

INTERNAL_MESSAGE = "Internal server error"


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = STATUS_BY_KIND[exc.kind]
    if exc.kind is ErrorKind.internal:
        log.error("internal_error", path=request.url.path, error=exc.message)
        return error_response(status_code, INTERNAL_MESSAGE)
    log.info("request_rejected", path=request.url.path, kind=exc.kind.value, status=status_code, error=exc.message)
    return error_response(status_code, exc.message)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = error_response(exc.status_code, str(exc.detail))
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    log.info("request_invalid", path=request.url.path, errors=problems)
    return error_response(400, "; ".join(problems) or "Invalid request")


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    # must stay sync: SlowAPIMiddleware falls back to its own handler for coroutines
    log.info("rate_limited", path=request.url.path, limit=str(exc.detail))
    response = error_response(429, f"Rate limit exceeded: {exc.detail}")
    limiter = getattr(request.app.state, "limiter", None)
    if limiter is not None:
        response = limiter._inject_headers(response, getattr(request.state, "view_rate_limit", None))
    return response


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    log.error("database_error", path=request.url.path, exc_info=exc)
    return error_response(500, INTERNAL_MESSAGE)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.error("unhandled_error", path=request.url.path, exc_info=exc)
    return error_response(500, INTERNAL_MESSAGE)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
