"""ASGI middleware pipeline: request id, access log, recovery, context.

Stages are plain ASGI callables so that they compose around any Starlette or
FastAPI app. ``install_pipeline`` registers them in their fixed order:

    RequestIDMiddleware      (outermost)
      AccessLogMiddleware
        RecoveryMiddleware
          ContextMiddleware  (innermost, closest to the router)

Recovery sits inside access logging so a recovered fault still produces the
"HTTP request completed" record with its 500 status, and the request id is
assigned before any of them runs.
"""

from dataclasses import replace
from typing import Any, Awaitable, Callable, MutableMapping
import time
import traceback
import uuid

from fastapi import FastAPI
from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import JSONResponse

from app.obs.context import (
    REQUEST_ID_HEADER,
    RequestContext,
    bind_request_context,
    current_request_id,
    get_request_context,
    request_scope,
    reset_request_context,
)
from app.obs.logger import Logger


CORRELATION_ID_HEADER = "X-Correlation-ID"
INTERNAL_ERROR_MESSAGE = "Internal server error"

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]


def new_request_id() -> str:
    return str(uuid.uuid4())


class RequestIDMiddleware:
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        req_id = new_request_id()
        token = bind_request_context(RequestContext(request_id=req_id))

        async def send_wrapper(message: Message):
            if message.get("type") == "http.response.start":
                message.setdefault("headers", [])
                MutableHeaders(scope=message).append(REQUEST_ID_HEADER, req_id)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            reset_request_context(token)


def _content_length(headers: Headers) -> int:
    try:
        return int(headers.get("content-length", ""))
    except ValueError:
        return -1


class AccessLogMiddleware:
    def __init__(self, app: ASGIApp, logger: Logger):
        self.app = app
        self.logger = logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        method = scope.get("method", "")
        path = scope.get("path", "")
        headers = Headers(scope=scope)
        client = scope.get("client")
        log = self.logger.with_context().with_request(method, path)

        log.info(
            "HTTP request started",
            user_agent=headers.get("user-agent", ""),
            remote_addr=client[0] if client else "",
            content_type=headers.get("content-type", ""),
            content_length=_content_length(headers),
        )

        start = time.monotonic()
        status_code = 500
        response_size = 0

        async def send_wrapper(message: Message):
            nonlocal status_code, response_size
            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 200))
            elif message.get("type") == "http.response.body":
                response_size += len(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            elapsed = time.monotonic() - start
            log.with_response(status_code, response_size).with_duration(elapsed).info(
                "HTTP request completed",
                response_time_ms=int(elapsed * 1000),
            )


class RecoveryMiddleware:
    """Turns any fault raised by inner stages into a 500 response."""

    def __init__(self, app: ASGIApp, logger: Logger):
        self.app = app
        self.logger = logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        response_started = False

        async def send_wrapper(message: Message):
            nonlocal response_started
            if message.get("type") == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            self.logger.with_context().with_request(
                scope.get("method", ""), scope.get("path", "")
            ).error(
                "Panic recovered",
                panic=repr(exc),
                stack=traceback.format_exc(),
            )
            if response_started:
                # Headers are already on the wire; nothing left to convert
                return
            response = JSONResponse(
                {"error": INTERNAL_ERROR_MESSAGE, "request_id": current_request_id()},
                status_code=500,
            )
            await response(scope, receive, send)


class ContextMiddleware:
    """Binds a logger pre-populated with the request identity."""

    def __init__(self, app: ASGIApp, logger: Logger):
        self.app = app
        self.logger = logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        ctx = get_request_context() or RequestContext(request_id=new_request_id())
        correlation_id = Headers(scope=scope).get(CORRELATION_ID_HEADER)
        if correlation_id:
            ctx = replace(ctx, correlation_id=correlation_id)
        ctx = replace(ctx, logger=self.logger.with_context(ctx))

        with request_scope(ctx):
            await self.app(scope, receive, send)


def install_pipeline(app: FastAPI, logger: Logger) -> FastAPI:
    # add_middleware puts the most recently added stage outermost
    app.add_middleware(ContextMiddleware, logger=logger)
    app.add_middleware(RecoveryMiddleware, logger=logger)
    app.add_middleware(AccessLogMiddleware, logger=logger)
    app.add_middleware(RequestIDMiddleware)
    return app
