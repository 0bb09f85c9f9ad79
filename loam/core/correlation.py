"""Correlation IDs tying logs and spans to the request that produced them.

A correlation ID is bound for the duration of a ``correlation_scope``. Inside
the scope it is readable with ``current_correlation_id()`` and attached to
every loguru record as ``extra["correlation_id"]``. Scopes nest: leaving one
restores the ID of the enclosing scope, and each asyncio task sees the ID of
the scope it was started in.
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from loguru import logger

_current: ContextVar[str | None] = ContextVar("loam_correlation_id", default=None)


def current_correlation_id() -> str | None:
    """Return the ID of the innermost correlation scope, if any."""
    return _current.get()


def new_correlation_id() -> str:
    """Generate a correlation ID.

    Returns:
        str: A hyphenated UUID4.
    """
    return str(uuid.uuid4())


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the enclosed block.

    Args:
        correlation_id: The ID to bind. Empty or missing IDs are replaced by a
            freshly generated one.

    Yields:
        str: The bound ID.
    """
    correlation_id = correlation_id or new_correlation_id()
    token = _current.set(correlation_id)
    try:
        with logger.contextualize(correlation_id=correlation_id):
            yield correlation_id
    finally:
        _current.reset(token)
