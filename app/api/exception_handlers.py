# FILE: app/api/exception_handlers.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.errors import EngineError
from app.utils.resp import err

logger = logging.getLogger(__name__)


def _first_validation_msg(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Validation error"
    e = errors[0]
    loc = ".".join(str(p) for p in e.get("loc", ()) if p != "body")
    return f"{loc}: {e.get('msg')}" if loc else str(e.get("msg"))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
        return err(msg=exc.detail, status_code=exc.status_code, code=type(exc).__name__)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # exc.detail can be str/dict/list
        msg = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return err(msg=msg, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return err(msg=_first_validation_msg(exc), status_code=422)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return err(msg="Internal server error", status_code=500)
