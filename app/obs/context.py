"""Request-scoped context carried by a single ContextVar.

The request-ID stage creates a ``RequestContext`` and later stages replace it
(never mutate it) as they learn more about the request. Handlers read both the
request id and the request logger through the accessors below, so there is a
single carrier for both.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Iterator, Optional

if TYPE_CHECKING:
    from app.obs.logger import Logger


REQUEST_ID_HEADER = "X-Request-ID"


@dataclass(frozen=True)
class RequestContext:
    request_id: str
    logger: Optional["Logger"] = None
    user_id: Optional[str] = None
    correlation_id: Optional[str] = None


# Module-private; every read and write goes through the functions below
_request_ctx: ContextVar[Optional[RequestContext]] = ContextVar("request_context", default=None)


def get_request_context() -> Optional[RequestContext]:
    return _request_ctx.get()


def bind_request_context(ctx: RequestContext) -> Token:
    return _request_ctx.set(ctx)


def reset_request_context(token: Token) -> None:
    _request_ctx.reset(token)


@contextmanager
def request_scope(ctx: RequestContext) -> Iterator[RequestContext]:
    """Bind ``ctx`` for the duration of a block."""
    token = bind_request_context(ctx)
    try:
        yield ctx
    finally:
        reset_request_context(token)


def current_request_id() -> str:
    ctx = _request_ctx.get()
    return ctx.request_id if ctx else ""


def current_logger(default: Optional["Logger"] = None) -> "Logger":
    """Logger bound to the current request, else ``default``, else a stdout logger."""
    ctx = _request_ctx.get()
    if ctx is not None and ctx.logger is not None:
        return ctx.logger
    if default is not None:
        return default.with_context(ctx) if ctx is not None else default

    from app.obs.logger import Logger

    return Logger.default()


def _update(**changes) -> Optional[RequestContext]:
    ctx = _request_ctx.get()
    if ctx is None:
        return None
    updated = replace(ctx, **changes)
    if updated.logger is not None:
        updated = replace(updated, logger=updated.logger.with_context(updated))
    _request_ctx.set(updated)
    return updated


def set_user_id(user_id: str) -> Optional[RequestContext]:
    """Record the caller's user id on the current request and its logger."""
    return _update(user_id=user_id)


def set_correlation_id(correlation_id: str) -> Optional[RequestContext]:
    return _update(correlation_id=correlation_id)
