import json
import logging
import sys
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

req_log = logging.getLogger("smartbudget.request")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        d = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "lvl": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info:
            d["exc"] = self.formatException(record.exc_info)
        return json.dumps(d, ensure_ascii=False)


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        t0 = time.perf_counter()
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        try:
            response: Response = await call_next(request)
        except Exception:
            # Unhandled errors become a 500 further out; log the line here.
            _log_request(request, rid, 500, t0)
            raise
        response.headers["X-Request-ID"] = rid
        _log_request(request, rid, response.status_code, t0)
        return response


def _log_request(request: Request, rid: str, status: int, t0: float) -> None:
    payload = {
        "rid": rid,
        "method": request.method,
        "path": request.url.path,
        "status": status,
        "duration_ms": int((time.perf_counter() - t0) * 1000),
    }
    req_log.info(json.dumps(payload, ensure_ascii=False))
