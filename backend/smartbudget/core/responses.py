import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from smartbudget.core.errors import ApiError, StoreUnavailable, code_for_status

logger = logging.getLogger(__name__)


def success(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": True, "data": jsonable_encoder(data)})


def error(
    code: str,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    # Error bodies never carry "ok"; clients branch on its presence.
    payload: dict[str, Any] = {"error": code, "message": message}
    if details is not None:
        payload["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content=payload, headers=headers)


def api_error_handler(_: Request, exc: ApiError) -> JSONResponse:
    return error(exc.code, exc.message, exc.status_code, exc.details, exc.headers)


def http_exc_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc, ApiError):
        return error(exc.code, exc.message, exc.status_code, exc.details, exc.headers)
    message = exc.detail if isinstance(exc.detail, str) else "Request failed."
    return error(code_for_status(exc.status_code), message, exc.status_code, headers=getattr(exc, "headers", None))


def validation_exc_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    fields = []
    for item in exc.errors():
        loc = [str(part) for part in item.get("loc", ()) if part not in ("body", "query")]
        fields.append({"field": ".".join(loc), "message": item.get("msg", "")})
    return error("invalid_request", "Request body or query is malformed.", 400, {"fields": fields})


def store_unavailable_handler(_: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.warning("store unavailable: %s", exc)
    return error("database_unavailable", "The data store is not configured on the server.", 503)


def server_exc_handler(req: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", req.method, req.url.path, exc_info=exc)
    return error("server_error", "Unexpected server error.", 500)


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(HTTPException, http_exc_handler)
    app.add_exception_handler(StarletteHTTPException, http_exc_handler)
    app.add_exception_handler(RequestValidationError, validation_exc_handler)
    app.add_exception_handler(StoreUnavailable, store_unavailable_handler)
    app.add_exception_handler(Exception, server_exc_handler)
