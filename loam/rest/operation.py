"""Operation assembly: one handler, its options, its OpenAPI description and its route.

``handle`` is the Api option declaring an operation::

    Api(
        "Pet Store",
        "1.0.0",
        handle(
            "GET",
            base_path("/pets").param("id", regex(r"^\\d+$")),
            return_json(get_pet),
            summary("Find a pet"),
            on_error(ProblemDetailsErrorHandler()),
        ),
    )

Everything is decided while the Api is built: the path is validated, the
options are collected, the OpenAPI operation is added to the document and
the interceptor chain is composed. Serving a request only runs the chain.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fastapi.openapi import models as oas
from loguru import logger
from opentelemetry.trace import Status, StatusCode
from starlette import status
from starlette.requests import Request
from starlette.responses import Response

from loam.core.observability import get_tracer
from loam.rest.context import Context
from loam.rest.error_handler import ErrorHandler, default_error_handler, request_log_context
from loam.rest.errors import DuplicatePathParameterError
from loam.rest.handler import Endpoint, EndpointLike
from loam.rest.interceptor import Interceptor, Next, chain
from loam.rest.parameter import ParameterOptions, path_param
from loam.rest.path import PathLike, as_path

if TYPE_CHECKING:
    from loam.rest.api import ApiOption, ApiOptions
    from loam.rest.openapi import SecurityScheme


@dataclass
class OperationOptions:
    """What the options of one operation contribute.

    Interceptors are kept in separate stages so that every parameter is
    injected before any validator runs, and every validator runs before any
    authenticator, whatever order the options were written in.
    """

    parameters: list[oas.Parameter] = field(default_factory=list)
    injection_interceptors: list[Interceptor] = field(default_factory=list)
    validation_interceptors: list[Interceptor] = field(default_factory=list)
    authentication_interceptors: list[Interceptor] = field(default_factory=list)
    interceptors: list[Interceptor] = field(default_factory=list)
    security_schemes: dict[str, SecurityScheme] = field(default_factory=dict)
    error_handler: ErrorHandler = default_error_handler
    summary: str | None = None
    description: str | None = None
    operation_id: str | None = None
    tags: list[str] = field(default_factory=list)

    def stages(self) -> list[Interceptor]:
        """All interceptors in execution order."""
        return [
            *self.injection_interceptors,
            *self.validation_interceptors,
            *self.authentication_interceptors,
            *self.interceptors,
        ]


type OperationOption = Callable[[OperationOptions], None]


def on_error(handler: ErrorHandler) -> OperationOption:
    """Replace the operation's error handler."""

    def apply(options: OperationOptions) -> None:
        options.error_handler = handler

    return apply


def summary(text: str) -> OperationOption:
    """Set the operation summary."""

    def apply(options: OperationOptions) -> None:
        options.summary = text

    return apply


def description(text: str) -> Callable[[OperationOptions | ParameterOptions], None]:
    """Describe an operation, or a parameter when passed to a declaration."""

    def apply(options: OperationOptions | ParameterOptions) -> None:
        options.description = text

    return apply


def operation_id(text: str) -> OperationOption:
    """Set the operation ID."""

    def apply(options: OperationOptions) -> None:
        options.operation_id = text

    return apply


def tags(*names: str) -> OperationOption:
    """Tag the operation."""

    def apply(options: OperationOptions) -> None:
        options.tags.extend(names)

    return apply


def build_operation(endpoint: Endpoint[Any, Any], options: OperationOptions) -> oas.Operation:
    """Describe an operation in OpenAPI terms."""
    data: dict[str, Any] = {"responses": endpoint.responses()}
    if options.parameters:
        data["parameters"] = options.parameters
    if (body := endpoint.request_body()) is not None:
        data["requestBody"] = body
    if options.summary:
        data["summary"] = options.summary
    if options.description:
        data["description"] = options.description
    if options.operation_id:
        data["operationId"] = options.operation_id
    if options.tags:
        data["tags"] = options.tags
    if options.security_schemes:
        # One requirement naming every scheme: all of them apply together
        data["security"] = [{name: [] for name in options.security_schemes}]
    return oas.Operation.model_validate(data)


class OperationHandler:
    """Serves one operation: the composed chain behind an error barrier.

    Any ``Exception`` raised by an interceptor, the reader, the handler or
    the writer is turned into a response by the operation's error handler.
    ``BaseException``s such as task cancellation propagate.
    """

    def __init__(
        self,
        method: str,
        route: str,
        endpoint: Endpoint[Any, Any],
        options: OperationOptions,
    ) -> None:
        self.method = method.upper()
        self.route = route
        self.endpoint = endpoint
        self.error_handler = options.error_handler
        self._serve: Next = chain(options.stages(), endpoint.serve)

    async def serve(self, request: Request) -> Response:
        """Serve ``request`` and always return a response."""
        ctx = Context(request)
        tracer = get_tracer(__name__)
        with tracer.start_as_current_span(
            "rest.operation",
            attributes={"http.request.method": self.method, "http.route": self.route},
        ) as span:
            try:
                return await self._serve(ctx)
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
                return await self._handle_error(ctx, exc)

    async def _handle_error(self, ctx: Context, exc: Exception) -> Response:
        try:
            return await self.error_handler(ctx, exc)
        except Exception as handler_exc:
            logger.opt(exception=handler_exc).error(
                "error handler failed",
                error=repr(exc),
                handler_error=repr(handler_exc),
                **request_log_context(ctx),
            )
            return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def check_path_parameters(route: str, parameters: list[oas.Parameter]) -> None:
    """Reject a path parameter declared both in the template and as an option.

    Raises:
        DuplicatePathParameterError: If two path parameters share a name.
    """
    seen: set[str] = set()
    for param in parameters:
        if param.in_ is not oas.ParameterInType.path:
            continue
        if param.name in seen:
            raise DuplicatePathParameterError(route, param.name)
        seen.add(param.name)


def handle(
    method: str,
    path: PathLike,
    handler: EndpointLike,
    *options: OperationOption,
) -> ApiOption:
    """Declare an operation.

    Args:
        method: HTTP method, in any case.
        path: A ``Path`` or a template string such as ``/pets/{id}``.
        handler: An ``Endpoint`` built by a content adapter, or a handler
            whose request and response types read and write themselves.
        *options: Parameter declarations and operation options.

    Returns:
        ApiOption: The option registering the operation on an Api.

    Raises:
        RegistrationError: When the Api is built, if the path declares a
            parameter twice or an option declares a path parameter again,
            the operation is a duplicate, a security scheme is unsupported or
            conflicting, or the handler has no adapter.
    """

    def apply(api: ApiOptions) -> None:
        template = as_path(path)
        template.validate()
        route = template.render()

        operation_options = OperationOptions()
        path_params = [path_param(param.name, *param.options) for param in template.params()]
        for option in (*path_params, *options):
            option(operation_options)
        check_path_parameters(route, operation_options.parameters)

        endpoint = Endpoint.of(handler).resolved()
        api.document.add_operation(method, route, build_operation(endpoint, operation_options))
        for name, scheme in operation_options.security_schemes.items():
            api.document.add_security_scheme(name, scheme)

        api.add_route(method, route, OperationHandler(method, route, endpoint, operation_options))
        logger.debug("registered operation", method=method.upper(), path=route)

    return apply
