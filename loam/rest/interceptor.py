"""Interceptors: composable steps run around an operation's endpoint.

An interceptor receives the next step and returns a new step::

    def log_calls(next_: Next) -> Next:
        async def serve(ctx: Context) -> Response:
            logger.info("calling", path=ctx.request.url.path)
            return await next_(ctx)
        return serve

Interceptors hand information downstream by calling ``next_`` with a context
built by ``ctx.with_value``. They stop the request by raising; the operation's
error handler then builds the response. Objects with an ``intercept(next_)``
method are accepted wherever an interceptor is expected.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from starlette.responses import Response

from loam.rest.context import Context

if TYPE_CHECKING:
    from loam.rest.operation import OperationOption, OperationOptions

type Next = Callable[[Context], Awaitable[Response]]
type InterceptorFunc = Callable[[Next], Next]


@runtime_checkable
class ServerInterceptor(Protocol):
    """An object form of an interceptor."""

    def intercept(self, next_: Next) -> Next:
        """Wrap the next step of the chain."""
        ...


type Interceptor = InterceptorFunc | ServerInterceptor


def as_interceptor_func(interceptor: Interceptor) -> InterceptorFunc:
    """Normalize an interceptor object or function to a function."""
    if isinstance(interceptor, ServerInterceptor):
        return interceptor.intercept
    return interceptor


def chain(interceptors: Sequence[Interceptor], terminal: Next) -> Next:
    """Compose interceptors around ``terminal``.

    The first interceptor is the outermost: it runs first on the way in and
    last on the way out.

    Args:
        interceptors: Interceptors in registration order.
        terminal: The innermost step, usually the endpoint.

    Returns:
        Next: The composed step.
    """
    serve = terminal
    for interceptor in reversed(interceptors):
        serve = as_interceptor_func(interceptor)(serve)
    return serve


def intercept(*interceptors: Interceptor) -> OperationOption:
    """Operation option adding interceptors.

    They run after parameter injection, validation and authentication, in
    the order given, right before the request body is read.
    """

    def apply(options: OperationOptions) -> None:
        options.interceptors.extend(interceptors)

    return apply
