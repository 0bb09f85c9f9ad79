"""Per-request context handed through interceptors and to handlers."""

from __future__ import annotations

from collections.abc import Hashable, Mapping
from types import MappingProxyType
from typing import Any

from starlette.requests import Request


class Context:
    """Immutable bag of request-scoped values.

    A context wraps the Starlette request being served. Interceptors never
    modify a context: ``with_value`` returns a new one, which they pass on to
    the next step of the chain. Parameter injection, JWT verifiers and user
    interceptors all hand information downstream this way.

    Cancellation is not modelled here: a disconnected client cancels the task
    serving the request, and ``is_disconnected`` can be polled by long
    running handlers.
    """

    __slots__ = ("_request", "_values")

    def __init__(
        self, request: Request, values: Mapping[Hashable, Any] | None = None
    ) -> None:
        self._request = request
        self._values: Mapping[Hashable, Any] = MappingProxyType(dict(values or {}))

    @property
    def request(self) -> Request:
        """The request being served."""
        return self._request

    def value(self, key: Hashable, default: Any = None) -> Any:  # noqa: ANN401
        """Return the value stored under ``key``, or ``default``."""
        return self._values.get(key, default)

    def with_value(self, key: Hashable, value: Any) -> Context:  # noqa: ANN401
        """Return a new context that also maps ``key`` to ``value``."""
        return Context(self._request, {**self._values, key: value})

    def with_request(self, request: Request) -> Context:
        """Return a new context with the same values around another request."""
        return Context(request, self._values)

    async def is_disconnected(self) -> bool:
        """Whether the client has gone away."""
        return await self._request.is_disconnected()

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __repr__(self) -> str:
        return (
            f"Context({self._request.method} {self._request.url.path}, "
            f"keys={list(self._values)!r})"
        )
