"""The Api: an ASGI application assembled from operation declarations.

Key features:
- **Declarative assembly**: ``Api(title, version, *options)`` applies every
  option once, then freezes the OpenAPI document and builds the host app
- **Built-in routes**: ``GET /openapi.json``, ``GET /health/readiness`` and
  ``GET /health/liveness``
- **Method routing**: Operations sharing a path share one route, so other
  methods get a 405 with a complete ``Allow`` header; ``HEAD`` is served by
  the ``GET`` operation unless one is declared
- **Middleware**: ``RequestContextMiddleware`` is always installed; more can
  be added with the ``middleware`` option

Registration mistakes surface as ``RegistrationError`` from the constructor,
before anything is served.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Final

from fastapi import FastAPI
from loguru import logger
from starlette import status
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import BaseRoute, Route
from starlette.types import Receive, Scope, Send

from loam.health import Binary, Monitor
from loam.rest.context import Context
from loam.rest.middleware.request_context import RequestContextMiddleware
from loam.rest.openapi import ApiDocument
from loam.rest.operation import OperationHandler
from loam.rest.responses import ORJSONResponse

OPENAPI_URL: Final[str] = "/openapi.json"
READINESS_URL: Final[str] = "/health/readiness"
LIVENESS_URL: Final[str] = "/health/liveness"

type FallbackHandler = Callable[[Context], Awaitable[Response]]


async def default_not_found(ctx: Context) -> Response:
    """Log the unmatched request and answer with an empty 404."""
    logger.warning(
        "no route matched",
        request_method=ctx.request.method,
        request_path=ctx.request.url.path,
    )
    return Response(status_code=status.HTTP_404_NOT_FOUND)


async def default_method_not_allowed(ctx: Context) -> Response:
    """Log the request and answer with an empty 405."""
    logger.warning(
        "method not allowed",
        request_method=ctx.request.method,
        request_path=ctx.request.url.path,
    )
    return Response(status_code=status.HTTP_405_METHOD_NOT_ALLOWED)


class PathRoute:
    """The operations registered under one path, by method."""

    def __init__(self, path: str) -> None:
        self.path = path
        self.operations: dict[str, OperationHandler] = {}

    def add(self, method: str, operation: OperationHandler) -> None:
        self.operations[method.upper()] = operation

    async def serve(self, request: Request) -> Response:
        """Dispatch to the operation of the request's method."""
        operation = self.operations.get(request.method) or self.operations["GET"]
        return await operation.serve(request)

    def route(self) -> Route:
        # A bound method keeps Starlette from treating the endpoint as raw ASGI
        return Route(self.path, endpoint=self.serve, methods=list(self.operations))


class ApiOptions:
    """Collects what the options of an Api contribute."""

    def __init__(self, document: ApiDocument) -> None:
        self.document = document
        self.routes: dict[str, PathRoute] = {}
        self.readiness: Monitor = Binary()
        self.liveness: Monitor = Binary()
        self.not_found: FallbackHandler = default_not_found
        self.method_not_allowed: FallbackHandler = default_method_not_allowed
        self.middleware: list[Middleware] = []

    def add_route(self, method: str, path: str, operation: OperationHandler) -> None:
        """Route ``method`` requests for ``path`` to ``operation``."""
        self.routes.setdefault(path, PathRoute(path)).add(method, operation)


type ApiOption = Callable[[ApiOptions], None]


def readiness(monitor: Monitor) -> ApiOption:
    """Back ``GET /health/readiness`` with ``monitor``."""

    def apply(options: ApiOptions) -> None:
        options.readiness = monitor

    return apply


def liveness(monitor: Monitor) -> ApiOption:
    """Back ``GET /health/liveness`` with ``monitor``."""

    def apply(options: ApiOptions) -> None:
        options.liveness = monitor

    return apply


def not_found(handler: FallbackHandler) -> ApiOption:
    """Answer requests matching no route with ``handler``."""

    def apply(options: ApiOptions) -> None:
        options.not_found = handler

    return apply


def method_not_allowed(handler: FallbackHandler) -> ApiOption:
    """Answer requests for a known path with an undeclared method.

    The ``Allow`` header is added to the handler's response unless it sets
    one itself.
    """

    def apply(options: ApiOptions) -> None:
        options.method_not_allowed = handler

    return apply


def middleware(cls: type, *args: Any, **kwargs: Any) -> ApiOption:  # noqa: ANN401
    """Install an ASGI middleware inside ``RequestContextMiddleware``.

    Middleware run in the order their options are given, outermost first.
    """

    def apply(options: ApiOptions) -> None:
        options.middleware.append(Middleware(cls, *args, **kwargs))

    return apply


class HealthProbe:
    """Endpoint answering 200 while its monitor is healthy and 503 otherwise."""

    def __init__(self, name: str, monitor: Monitor) -> None:
        self.name = name
        self.monitor = monitor

    async def serve(self, request: Request) -> Response:
        try:
            healthy = await self.monitor.healthy()
        except Exception as exc:  # noqa: BLE001 - a failing monitor means unhealthy
            logger.warning("health check failed", probe=self.name, error=repr(exc))
            healthy = False
        if healthy:
            return Response(status_code=status.HTTP_200_OK)
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


class Api:
    """An OpenAPI-described HTTP service.

    Args:
        title: Title of the OpenAPI document.
        version: Version of the OpenAPI document.
        *options: Operations from ``handle`` and Api options.

    Raises:
        RegistrationError: If any declaration is invalid.

    Attributes:
        document: The document operations were registered into.
        openapi: The served snapshot of the document.
        app: The FastAPI application hosting the routes.
    """

    def __init__(self, title: str, version: str, *options: ApiOption) -> None:
        self.document = ApiDocument(title, version)
        self.options = ApiOptions(self.document)
        for option in options:
            option(self.options)

        self.openapi: dict[str, Any] = self.document.to_dict()
        self.app = self._build_app()
        logger.info(
            "Api assembled",
            title=title,
            version=version,
            operations=sum(len(r.operations) for r in self.options.routes.values()),
        )

    def _build_app(self) -> FastAPI:
        routes: list[BaseRoute] = [route.route() for route in self.options.routes.values()]
        routes += [
            Route(OPENAPI_URL, endpoint=self._serve_openapi, methods=["GET"]),
            Route(
                READINESS_URL,
                endpoint=HealthProbe("readiness", self.options.readiness).serve,
                methods=["GET"],
            ),
            Route(
                LIVENESS_URL,
                endpoint=HealthProbe("liveness", self.options.liveness).serve,
                methods=["GET"],
            ),
        ]

        return FastAPI(
            title=self.document.title,
            version=self.document.version,
            openapi_url=None,
            docs_url=None,
            redoc_url=None,
            routes=routes,
            middleware=[Middleware(RequestContextMiddleware), *self.options.middleware],
            exception_handlers={
                status.HTTP_404_NOT_FOUND: self._not_found,
                status.HTTP_405_METHOD_NOT_ALLOWED: self._method_not_allowed,
            },
        )

    async def _serve_openapi(self, request: Request) -> Response:
        return ORJSONResponse(self.openapi)

    async def _not_found(self, request: Request, exc: Exception) -> Response:
        return await self.options.not_found(Context(request))

    async def _method_not_allowed(self, request: Request, exc: Exception) -> Response:
        response = await self.options.method_not_allowed(Context(request))
        allow = (exc.headers or {}).get("Allow") if isinstance(exc, HTTPException) else None
        if allow and "allow" not in response.headers:
            response.headers["Allow"] = allow
        return response

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.app(scope, receive, send)
