"""Operation error handlers.

An error handler turns an exception raised anywhere in an operation's chain
into the response sent to the client. The default one logs the error and
lets errors that know their own response (``HttpResponseWriter``) render it;
anything else becomes an empty 500.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from starlette import status
from starlette.responses import Response

from loam.core.error_context import sanitize_error_context
from loam.rest.context import Context
from loam.rest.errors import HttpResponseWriter

type ErrorHandler = Callable[[Context, Exception], Awaitable[Response]]


def request_log_context(ctx: Context) -> dict[str, Any]:
    """Request fields attached to error logs."""
    return {
        "request_method": ctx.request.method,
        "request_path": ctx.request.url.path,
    }


def log_error(ctx: Context, exc: Exception) -> None:
    """Log an error about to be turned into a response."""
    logger.error(
        "sending error response",
        error=repr(exc),
        **sanitize_error_context(exc, request_log_context(ctx)),
    )


async def default_error_handler(ctx: Context, exc: Exception) -> Response:
    """Log ``exc`` and render it.

    Args:
        ctx: The context of the failed request.
        exc: The exception that stopped the chain.

    Returns:
        Response: The error's own response, or an empty 500.
    """
    log_error(ctx, exc)
    if isinstance(exc, HttpResponseWriter):
        return exc.write_http_response(ctx)
    return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
