"""JSON request and response bodies.

Values are validated and dumped with pydantic ``TypeAdapter``s, so any type
pydantic understands works: models, dataclasses, TypedDicts, lists and
builtins. Responses are encoded with orjson.
"""

from typing import Any, Final, Generic, TypeVar

from fastapi.openapi import models as oas
from pydantic import TypeAdapter, ValidationError
from starlette import status
from starlette.responses import Response

from loam.rest.context import Context
from loam.rest.errors import BadRequestError, InvalidContentTypeError
from loam.rest.handler import (
    UNSET,
    Consumer,
    ConsumerFunc,
    ConsumerHandler,
    Endpoint,
    EndpointLike,
    Producer,
    ProducerFunc,
    ProducerHandler,
    concrete_type,
)
from loam.rest.openapi import reflect_schema, request_body, response
from loam.rest.responses import ORJSONResponse

JSON_CONTENT_TYPE: Final[str] = "application/json"

T = TypeVar("T")


class JsonRequestReader(Generic[T]):
    """Reads ``application/json`` bodies into ``request_type``.

    The content type must match exactly; parameters such as a charset are
    rejected.
    """

    def __init__(self, request_type: Any) -> None:  # noqa: ANN401
        self.request_type = request_type
        self._adapter: TypeAdapter[T] = TypeAdapter(request_type)

    def spec(self) -> oas.RequestBody:
        return request_body(JSON_CONTENT_TYPE, reflect_schema(self.request_type))

    async def read_request(self, ctx: Context) -> T:
        content_type = ctx.request.headers.get("content-type", "")
        if content_type != JSON_CONTENT_TYPE:
            raise BadRequestError(InvalidContentTypeError(content_type))

        body = await ctx.request.body()
        try:
            return self._adapter.validate_json(body)
        except ValidationError as exc:
            raise BadRequestError(exc) from exc


class JsonResponseWriter(Generic[T]):
    """Writes values of ``response_type`` as ``application/json``."""

    def __init__(
        self,
        response_type: Any,  # noqa: ANN401
        status_code: int = status.HTTP_200_OK,
    ) -> None:
        self.response_type = response_type
        self.status_code = status_code
        self._adapter: TypeAdapter[T] = TypeAdapter(response_type)

    def spec(self) -> tuple[int, oas.Response]:
        schema = reflect_schema(self.response_type, mode="serialization")
        return self.status_code, response("OK", JSON_CONTENT_TYPE, schema)

    async def write_response(self, ctx: Context, value: T) -> Response:
        return ORJSONResponse(
            self._adapter.dump_python(value, mode="json"), status_code=self.status_code
        )


def consume_json(handler: EndpointLike, *, request_type: Any = UNSET) -> Endpoint[Any, Any]:  # noqa: ANN401
    """Read the handler's request value from a JSON body.

    Args:
        handler: A handler or an endpoint built by another adapter.
        request_type: Overrides the type annotated on the handler.

    Returns:
        Endpoint: The endpoint with a JSON request reader.
    """
    endpoint = Endpoint.of(handler)
    if request_type is UNSET:
        request_type = endpoint.request_type
    return endpoint.with_reader(JsonRequestReader(concrete_type(request_type)))


def return_json(
    handler: EndpointLike,
    *,
    response_type: Any = UNSET,  # noqa: ANN401
    status_code: int = status.HTTP_200_OK,
) -> Endpoint[Any, Any]:
    """Write the handler's response value as a JSON body.

    Args:
        handler: A handler or an endpoint built by another adapter.
        response_type: Overrides the type annotated on the handler.
        status_code: Status of successful responses.

    Returns:
        Endpoint: The endpoint with a JSON response writer.
    """
    endpoint = Endpoint.of(handler)
    if response_type is UNSET:
        response_type = endpoint.response_type
    return endpoint.with_writer(JsonResponseWriter(concrete_type(response_type), status_code))


def handle_json(
    handler: EndpointLike,
    *,
    request_type: Any = UNSET,  # noqa: ANN401
    response_type: Any = UNSET,  # noqa: ANN401
) -> Endpoint[Any, Any]:
    """Read and write JSON bodies."""
    return consume_json(
        return_json(handler, response_type=response_type), request_type=request_type
    )


def produce_json(
    producer: Producer[Any] | ProducerFunc[Any],
    *,
    response_type: Any = UNSET,  # noqa: ANN401
) -> Endpoint[Any, Any]:
    """Serve a producer's value as JSON; the request body is ignored."""
    return return_json(ProducerHandler(producer), response_type=response_type)


def consume_only_json(
    consumer: Consumer[Any] | ConsumerFunc[Any],
    *,
    request_type: Any = UNSET,  # noqa: ANN401
) -> Endpoint[Any, Any]:
    """Feed a JSON body to a consumer and answer with an empty 200."""
    return consume_json(ConsumerHandler(consumer), request_type=request_type)

