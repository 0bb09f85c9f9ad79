"""Typed handler contract and the endpoint every operation serves.

A handler turns a typed request value into a typed response value::

    async def get_pet(ctx: Context, req: EmptyRequest) -> Pet: ...

or, as an object, ``async def handle(self, ctx, req)``. How the request value
is read from the HTTP request, and how the response value is written, is the
job of a ``RequestReader`` and a ``ResponseWriter``. An ``Endpoint`` bundles
the three; content adapters such as ``handle_json`` build endpoints, and they
compose: ``consume_json(return_json(h))`` is ``handle_json(h)``.

Request and response types are taken from the handler's annotations unless
given explicitly. Types implementing the ``TypedRequest``/``TypedResponse``
protocols read and write themselves and need no adapter.
"""

from __future__ import annotations

import inspect
import typing
from collections.abc import Awaitable, Callable
from typing import Any, ClassVar, Generic, Protocol, Self, TypeVar, runtime_checkable

from fastapi.openapi import models as oas
from starlette import status
from starlette.responses import Response

from loam.core.observability import get_tracer
from loam.rest.context import Context
from loam.rest.errors import RegistrationError
from loam.rest.openapi import response

Req = TypeVar("Req")
Resp = TypeVar("Resp")
T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)
T_contra = TypeVar("T_contra", contravariant=True)

# Marks a request or response type that was neither annotated nor given
UNSET: Any = inspect.Parameter.empty


class Handler(Protocol[T_contra, T_co]):
    """Object form of a handler."""

    async def handle(self, ctx: Context, req: T_contra) -> T_co:
        """Produce the response value for ``req``."""
        ...


class Producer(Protocol[T_co]):
    """Object form of a producer: a handler without a request body."""

    async def produce(self, ctx: Context) -> T_co:
        """Produce the response value."""
        ...


class Consumer(Protocol[T_contra]):
    """Object form of a consumer: a handler without a response body."""

    async def consume(self, ctx: Context, req: T_contra) -> None:
        """Consume the request value."""
        ...


type HandlerFunc[I, O] = Callable[[Context, I], Awaitable[O]]
type ProducerFunc[O] = Callable[[Context], Awaitable[O]]
type ConsumerFunc[I] = Callable[[Context, I], Awaitable[None]]


@runtime_checkable
class TypedRequest(Protocol):
    """A request type that reads itself from the HTTP request."""

    @classmethod
    def spec(cls) -> oas.RequestBody | None:
        """The OpenAPI request body, or None without a body."""
        ...

    @classmethod
    async def read_request(cls, ctx: Context) -> Self:
        """Read an instance from ``ctx.request``."""
        ...


@runtime_checkable
class TypedResponse(Protocol):
    """A response type that writes itself as an HTTP response."""

    @classmethod
    def spec(cls) -> tuple[int, oas.Response]:
        """The status code and OpenAPI response of this type."""
        ...

    async def write_response(self, ctx: Context) -> Response:
        """Build the HTTP response."""
        ...


class RequestReader(Protocol[T_co]):
    """Reads a typed value from the HTTP request of a context."""

    def spec(self) -> oas.RequestBody | None:
        """The OpenAPI request body, or None without a body."""
        ...

    async def read_request(self, ctx: Context) -> T_co:
        """Read the value."""
        ...


class ResponseWriter(Protocol[T_contra]):
    """Writes a typed value as an HTTP response."""

    def spec(self) -> tuple[int, oas.Response]:
        """The status code and OpenAPI response written."""
        ...

    async def write_response(self, ctx: Context, value: T_contra) -> Response:
        """Build the HTTP response for ``value``."""
        ...


class EmptyRequest:
    """A request without a body."""

    @classmethod
    def spec(cls) -> oas.RequestBody | None:
        """No request body."""
        return None

    @classmethod
    async def read_request(cls, ctx: Context) -> EmptyRequest:
        """Return an empty request; the body is not read."""
        return cls()

    def __eq__(self, other: object) -> bool:
        return isinstance(other, EmptyRequest)

    def __hash__(self) -> int:
        return hash(EmptyRequest)


class EmptyResponse:
    """A 200 response without a body."""

    status_code: ClassVar[int] = status.HTTP_200_OK

    @classmethod
    def spec(cls) -> tuple[int, oas.Response]:
        """A 200 response without content."""
        return cls.status_code, response("OK")

    async def write_response(self, ctx: Context) -> Response:
        """Write an empty 200."""
        return Response(status_code=self.status_code)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, EmptyResponse)

    def __hash__(self) -> int:
        return hash(EmptyResponse)


class TypedRequestReader(Generic[T]):
    """Reader delegating to a ``TypedRequest`` type."""

    def __init__(self, request_type: type[T]) -> None:
        self.request_type = request_type

    def spec(self) -> oas.RequestBody | None:
        return self.request_type.spec()  # type: ignore[attr-defined]

    async def read_request(self, ctx: Context) -> T:
        return await self.request_type.read_request(ctx)  # type: ignore[attr-defined]


class TypedResponseWriter(Generic[T]):
    """Writer delegating to the response value itself.

    The value must implement ``TypedResponse`` or already be a Starlette
    ``Response``.
    """

    def __init__(self, response_type: Any = Any) -> None:  # noqa: ANN401
        self.response_type = response_type

    def spec(self) -> tuple[int, oas.Response]:
        if _is_typed_response(self.response_type):
            return self.response_type.spec()
        return status.HTTP_200_OK, response("OK")

    async def write_response(self, ctx: Context, value: T) -> Response:
        if isinstance(value, Response):
            return value
        if value is None and self.response_type is EmptyResponse:
            return await EmptyResponse().write_response(ctx)
        if isinstance(value, TypedResponse):
            return await value.write_response(ctx)
        raise TypeError(
            f"{type(value).__name__} has no response writer; wrap the handler "
            "with a content adapter such as return_json"
        )


def _is_typed_request(tp: Any) -> bool:  # noqa: ANN401
    return isinstance(tp, type) and isinstance(tp, TypedRequest)


def _is_typed_response(tp: Any) -> bool:  # noqa: ANN401
    return isinstance(tp, type) and callable(getattr(tp, "spec", None)) and callable(
        getattr(tp, "write_response", None)
    )


def _callable_of(handler: Any, method: str) -> Callable[..., Awaitable[Any]]:  # noqa: ANN401
    if callable(target := getattr(handler, method, None)):
        return target
    if callable(handler):
        return handler
    raise TypeError(f"{handler!r} is neither callable nor has a {method}() method")


def _signature_types(fn: Callable[..., Any], arity: int) -> tuple[Any, Any]:
    """Return the annotated type of the ``arity``-th argument and the return type.

    Missing annotations come back as ``inspect.Parameter.empty``.
    """
    target = fn if inspect.isfunction(fn) or inspect.ismethod(fn) else type(fn).__call__
    try:
        hints = typing.get_type_hints(target)
    except (NameError, TypeError):
        hints = {}
    params = [
        p
        for p in inspect.signature(fn).parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
    request_type = UNSET
    if arity and len(params) >= arity:
        request_type = hints.get(params[arity - 1].name, UNSET)
    return request_type, hints.get("return", UNSET)


class ProducerHandler(Generic[Resp]):
    """Adapts a producer to a handler taking an ``EmptyRequest``."""

    def __init__(self, producer: Producer[Resp] | ProducerFunc[Resp]) -> None:
        self._produce = _callable_of(producer, "produce")
        _, self.response_type = _signature_types(self._produce, 0)

    async def handle(self, ctx: Context, req: EmptyRequest) -> Resp:
        return await self._produce(ctx)


class ConsumerHandler(Generic[Req]):
    """Adapts a consumer to a handler returning an ``EmptyResponse``."""

    def __init__(self, consumer: Consumer[Req] | ConsumerFunc[Req]) -> None:
        self._consume = _callable_of(consumer, "consume")
        self.request_type, _ = _signature_types(self._consume, 2)

    async def handle(self, ctx: Context, req: Req) -> EmptyResponse:
        await self._consume(ctx, req)
        return EmptyResponse()


class Endpoint(Generic[Req, Resp]):
    """A handler together with its request reader and response writer.

    Endpoints are immutable; ``with_reader`` and ``with_writer`` return new
    ones. ``serve`` is what an operation runs once its interceptors pass.
    """

    def __init__(
        self,
        handler: Handler[Req, Resp] | HandlerFunc[Req, Resp],
        *,
        request_type: Any,  # noqa: ANN401
        response_type: Any,  # noqa: ANN401
        reader: RequestReader[Req] | None = None,
        writer: ResponseWriter[Resp] | None = None,
    ) -> None:
        self.handler = handler
        self.request_type = request_type
        self.response_type = response_type
        self.reader = reader
        self.writer = writer
        self._handle = _callable_of(handler, "handle")

    @classmethod
    def of(
        cls,
        handler: Any,  # noqa: ANN401
        *,
        request_type: Any = UNSET,  # noqa: ANN401
        response_type: Any = UNSET,  # noqa: ANN401
    ) -> Endpoint[Any, Any]:
        """Wrap a handler, or return an existing endpoint unchanged.

        Types not given explicitly are read from the handler's annotations,
        falling back to ``request_type``/``response_type`` attributes the
        producer and consumer adapters carry.
        """
        if isinstance(handler, Endpoint):
            return handler

        fn = _callable_of(handler, "handle")
        annotated_request, annotated_response = _signature_types(fn, 2)
        if request_type is UNSET:
            request_type = getattr(handler, "request_type", annotated_request)
        if response_type is UNSET:
            response_type = getattr(handler, "response_type", annotated_response)
        return cls(handler, request_type=request_type, response_type=response_type)

    def with_reader(self, reader: RequestReader[Req]) -> Endpoint[Req, Resp]:
        """Return a copy reading requests with ``reader``."""
        return Endpoint(
            self.handler,
            request_type=self.request_type,
            response_type=self.response_type,
            reader=reader,
            writer=self.writer,
        )

    def with_writer(self, writer: ResponseWriter[Resp]) -> Endpoint[Req, Resp]:
        """Return a copy writing responses with ``writer``."""
        return Endpoint(
            self.handler,
            request_type=self.request_type,
            response_type=self.response_type,
            reader=self.reader,
            writer=writer,
        )

    def resolved(self) -> Endpoint[Req, Resp]:
        """Fill in a reader and writer where the types allow one.

        Raises:
            RegistrationError: If a concrete request or response type has no
                adapter and does not read or write itself.
        """
        reader, writer = self.reader, self.writer

        if reader is None:
            if _is_typed_request(self.request_type):
                reader = TypedRequestReader(self.request_type)
            elif self.request_type in (UNSET, Any, None, type(None)):
                reader = TypedRequestReader(EmptyRequest)
            else:
                raise RegistrationError(
                    f"no request reader for {_type_name(self.request_type)}; "
                    "wrap the handler with a content adapter such as consume_json"
                )

        if writer is None:
            if self.response_type in (None, type(None)):
                writer = TypedResponseWriter(EmptyResponse)
            elif self.response_type in (UNSET, Any) or _is_typed_response(
                self.response_type
            ):
                writer = TypedResponseWriter(self.response_type)
            else:
                raise RegistrationError(
                    f"no response writer for {_type_name(self.response_type)}; "
                    "wrap the handler with a content adapter such as return_json"
                )

        if reader is self.reader and writer is self.writer:
            return self
        return Endpoint(
            self.handler,
            request_type=self.request_type,
            response_type=self.response_type,
            reader=reader,
            writer=writer,
        )

    def request_body(self) -> oas.RequestBody | None:
        """The OpenAPI request body."""
        return self.resolved().reader.spec()  # type: ignore[union-attr]

    def responses(self) -> dict[str, oas.Response]:
        """The OpenAPI responses map."""
        status_code, spec = self.resolved().writer.spec()  # type: ignore[union-attr]
        return {str(status_code): spec}

    async def serve(self, ctx: Context) -> Response:
        """Read the request, run the handler and write its response.

        The request is closed on every exit path.
        """
        endpoint = self if self.reader and self.writer else self.resolved()
        tracer = get_tracer(__name__)
        try:
            with tracer.start_as_current_span("rest.read_request"):
                req = await endpoint.reader.read_request(ctx)  # type: ignore[union-attr]
            resp = await endpoint._handle(ctx, req)
            with tracer.start_as_current_span("rest.write_response"):
                return await endpoint.writer.write_response(ctx, resp)  # type: ignore[union-attr]
        finally:
            await ctx.request.close()


def _type_name(tp: Any) -> str:  # noqa: ANN401
    return getattr(tp, "__name__", repr(tp))


type EndpointLike = Endpoint[Any, Any] | Handler[Any, Any] | HandlerFunc[Any, Any]


def concrete_type(tp: Any) -> Any:  # noqa: ANN401
    """Map an unset type to ``Any`` so it can be reflected and validated."""
    return Any if tp is UNSET else tp
