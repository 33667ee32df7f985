"""Correlation ID middleware.

Tags each HTTP request with an ID so API log lines can be told apart from
scheduler tick lines (``tick-...``). A well-formed ID sent by the caller is
kept; otherwise ``req-<hex>`` is generated. The ID is echoed back in the
response. Written as plain ASGI so streaming responses are not buffered.
"""

import time
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from basal_loop.logging_config import correlation_id_ctx, get_logger

logger = get_logger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"
_HEADER_KEY = CORRELATION_ID_HEADER.lower().encode()
_MAX_ID_LENGTH = 128
_QUIET_PATH_PREFIX = "/health"


def _incoming_id(scope: Scope) -> str | None:
    raw = dict(scope.get("headers", [])).get(_HEADER_KEY)
    if raw is None:
        return None
    candidate = raw.decode("latin-1").strip()
    valid = 0 < len(candidate) <= _MAX_ID_LENGTH and candidate.isprintable()
    return candidate if valid else None


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class CorrelationIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        correlation_id = _incoming_id(scope) or f"req-{uuid.uuid4().hex[:12]}"
        header = (_HEADER_KEY, correlation_id.encode("latin-1"))
        response_status: list[int] = []

        async def send_with_header(message: Message) -> None:
            if message["type"] == "http.response.start":
                response_status.append(message["status"])
                message = {
                    **message,
                    "headers": [*message.get("headers", []), header],
                }
            await send(message)

        token = correlation_id_ctx.set(correlation_id)
        started = time.perf_counter()
        request = {"method": scope.get("method", ""), "path": scope.get("path", "")}
        try:
            await self.app(scope, receive, send_with_header)
        except Exception:
            logger.exception(
                "Request raised", duration_ms=_elapsed_ms(started), **request
            )
            raise
        else:
            if not request["path"].startswith(_QUIET_PATH_PREFIX):
                status = response_status[0] if response_status else None
                log = logger.warning if status and status >= 500 else logger.info
                log(
                    "Request handled",
                    status_code=status,
                    duration_ms=_elapsed_ms(started),
                    **request,
                )
        finally:
            correlation_id_ctx.reset(token)
