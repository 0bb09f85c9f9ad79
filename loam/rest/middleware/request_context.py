"""Request context middleware for correlation IDs.

Key features:
- **Correlation ID propagation**: Takes the ID sent by the client or
  generates one per request
- **Correlation scope**: Serves the request inside a ``correlation_scope`` so
  spans, error handlers and every log record emitted meanwhile carry it
- **Response headers**: Echoes it so clients can quote it back
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from loam.core.correlation import correlation_scope

CORRELATION_ID_HEADER = "X-Correlation-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Manage the correlation ID of each request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Serve the request with its correlation ID in context.

        Args:
            request: The incoming request.
            call_next: The next middleware or the router.

        Returns:
            Response: The response carrying the correlation ID header.
        """
        with correlation_scope(request.headers.get(CORRELATION_ID_HEADER)) as correlation_id:
            response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response
