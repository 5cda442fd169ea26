# src/identity_service/middleware/logging.py
import time
import uuid
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

logger = structlog.get_logger("http")


class RequestIdMiddleware:
    """Bind a request id into the log context and echo it on the response."""

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        self.app = app
        self.header_name = header_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        header_key = self.header_name.lower().encode("latin-1")
        incoming = dict(scope.get("headers") or []).get(header_key)
        req_id = incoming.decode("latin-1") if incoming else uuid.uuid4().hex
        path = scope.get("path", "")
        method = scope.get("method", "")
        status_code = 500
        start = time.perf_counter()

        async def send_with_request_id(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                MutableHeaders(scope=message)[self.header_name] = req_id
            await send(message)

        clear_contextvars()
        bind_contextvars(request_id=req_id, path=path, method=method)
        try:
            await self.app(scope, receive, send_with_request_id)
        except Exception as exc:
            logger.exception("http_request_exception", error_type=type(exc).__name__)
            raise
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            logger.info("http_request_finished", status_code=status_code, duration_ms=duration_ms)
            clear_contextvars()
