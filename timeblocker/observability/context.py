"""
Per-request log context.

The API middleware binds a request id, plus the caller's user id when an
X-User-Id header is present; the formatters in observability.logging read
them back. Background jobs run in a copy of the submitting context, so a
calendar sync logs under the request that queued it.
"""

import contextvars
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_user_id: contextvars.ContextVar[int | None] = contextvars.ContextVar("user_id", default=None)


def generate_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


def get_request_id() -> str | None:
    return _request_id.get()


def get_user_id() -> int | None:
    return _user_id.get()


def current_context() -> dict:
    """Bound fields, unset ones omitted."""
    fields = {"request_id": _request_id.get(), "user_id": _user_id.get()}
    return {key: value for key, value in fields.items() if value is not None}


@contextmanager
def bind(request_id: str | None = None, user_id: int | None = None) -> Iterator[str]:
    """
    Bind log context for the duration of the block. Yields the request id.

        with bind(user_id=7):
            scheduler.confirm(7, [1, 2], "2026-03-02")
    """
    request_id = request_id or generate_request_id()
    tokens = [_request_id.set(request_id)]
    if user_id is not None:
        tokens.append(_user_id.set(user_id))
    try:
        yield request_id
    finally:
        for token in reversed(tokens):
            token.var.reset(token)
