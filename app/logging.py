from __future__ import annotations
import json
import logging
import time
from typing import Any, Callable
from starlette.requests import Request
from starlette.responses import Response


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in ("session_id", "document_id", "sender", "intent", "state"):
            if hasattr(record, field):
                payload[field] = getattr(record, field)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(level: int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]


# request.state attributes copied into the access line when a route sets them
ACCESS_STATE_FIELDS = ("channel", "selected_intent", "reply_type")


def _access_line(request: Request, status: int, started: float) -> dict:
    line = {
        "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "method": request.method,
        "path": request.url.path,
        "status": status,
        "latency_ms": round((time.perf_counter() - started) * 1000.0, 2),
    }
    user_id = request.headers.get("x-user-id")
    if user_id:
        line["user_id"] = user_id
    state = request.state
    for name in ACCESS_STATE_FIELDS:
        value = getattr(state, name, None)
        if value is not None:
            line[name] = value
    return line


def json_logger_middleware() -> Callable:
    """Starlette ``http`` middleware printing one JSON access line per request.

    Chat and webhook routes tag ``request.state`` with the channel, the routed
    intent and the reply type so a single line shows what the assistant did.
    """

    async def _middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
        started = time.perf_counter()
        status = 500
        try:
            response: Response = await call_next(request)
            status = response.status_code
            return response
        finally:
            print(json.dumps(_access_line(request, status, started)), flush=True)

    return _middleware
