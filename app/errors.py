"""Exception handlers shared by every router."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.services.omnibridge.errors import OmniBridgeError

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")


async def omnibridge_error_handler(request: Request, exc: OmniBridgeError) -> JSONResponse:
    logger.info(
        "omnibridge_error path=%s code=%s status=%s request_id=%s",
        request.url.path,
        exc.code,
        exc.status_code,
        _request_id(request),
    )
    return JSONResponse(status_code=exc.status_code, content={"code": exc.code, "detail": exc.detail})


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": f"http_{exc.status_code}", "detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"code": "validation_error", "detail": exc.errors()},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error path=%s method=%s request_id=%s",
        request.url.path,
        request.method,
        _request_id(request),
    )
    return JSONResponse(status_code=500, content={"code": "internal_error", "detail": "Internal server error"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OmniBridgeError, omnibridge_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
