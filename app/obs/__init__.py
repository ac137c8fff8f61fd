"""Observability package.

Structured logging with immutable field derivation, the request-scoped
context, and the ASGI middleware pipeline that ties them to each request.
"""

__all__ = [
    "middleware",
    "logger",
    "context",
]
