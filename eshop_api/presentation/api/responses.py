"""Standard response envelope and the exception handlers that emit it."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...core.errors import ApiError, ErrorKind, FieldError, ValidationFailed, field_errors_from

logger = logging.getLogger(__name__)

SUCCESS_STATUS = {"OK": 200, "CREATED": 201, "ACCEPTED": 202}

_KIND_BY_STATUS = {kind.status_code: kind for kind in ErrorKind}


def _envelope(status_code: int, message: str, result: Any = None) -> Dict[str, Any]:
    if status_code < 400:
        status = "success"
    elif status_code < 500:
        status = "fail"
    else:
        status = "error"
    return {
        "statusCode": status_code,
        "status": status,
        "message": message,
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        "result": jsonable_encoder(result),
    }


def api_success(status: str, message: str, result: Any = None) -> JSONResponse:
    status_code = SUCCESS_STATUS[status]
    return JSONResponse(status_code=status_code, content=_envelope(status_code, message, result))


def api_error(status_code: int, message: str, errors: Optional[List[FieldError]] = None) -> JSONResponse:
    body = _envelope(status_code, message)
    if errors:
        body["errors"] = [error.as_dict() for error in errors]
    return JSONResponse(status_code=status_code, content=body)


async def _handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    errors = exc.errors if isinstance(exc, ValidationFailed) else None
    return api_error(exc.status_code, exc.message, errors)


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = field_errors_from(exc)  # type: ignore[arg-type]
    message = errors[0].message if errors else "Validation failed"
    return api_error(ErrorKind.BAD_REQUEST.status_code, message, errors)


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    kind = _KIND_BY_STATUS.get(exc.status_code)
    message = str(exc.detail) if exc.detail else (kind.value if kind else "Error")
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = "Route not found"
    return api_error(exc.status_code, message)


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return api_error(500, "Internal Server Error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _handle_api_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _handle_unexpected)
