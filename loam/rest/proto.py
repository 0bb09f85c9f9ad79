"""Protocol Buffers request and response bodies.

Bodies are binary-encoded messages sent as ``application/x-protobuf``. The
OpenAPI schema of a message is derived from its descriptor, keyed by the
JSON names of its fields.
"""

from typing import Any, Final, Generic, TypeVar

from fastapi.openapi import models as oas
from google.protobuf.descriptor import Descriptor, FieldDescriptor
from google.protobuf.message import DecodeError, Message
from starlette import status
from starlette.responses import Response

from loam.rest.context import Context
from loam.rest.errors import BadRequestError, InvalidContentTypeError, RegistrationError
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
)
from loam.rest.openapi import JsonSchema, request_body, response

PROTOBUF_CONTENT_TYPE: Final[str] = "application/x-protobuf"

M = TypeVar("M", bound=Message)

_SCALAR_SCHEMAS: Final[dict[int, JsonSchema]] = {
    FieldDescriptor.TYPE_BOOL: {"type": "boolean"},
    FieldDescriptor.TYPE_INT32: {"type": "integer", "format": "int32"},
    FieldDescriptor.TYPE_SINT32: {"type": "integer", "format": "int32"},
    FieldDescriptor.TYPE_SFIXED32: {"type": "integer", "format": "int32"},
    FieldDescriptor.TYPE_UINT32: {"type": "integer", "format": "uint32"},
    FieldDescriptor.TYPE_FIXED32: {"type": "integer", "format": "uint32"},
    FieldDescriptor.TYPE_INT64: {"type": "integer", "format": "int64"},
    FieldDescriptor.TYPE_SINT64: {"type": "integer", "format": "int64"},
    FieldDescriptor.TYPE_SFIXED64: {"type": "integer", "format": "int64"},
    FieldDescriptor.TYPE_UINT64: {"type": "integer", "format": "uint64"},
    FieldDescriptor.TYPE_FIXED64: {"type": "integer", "format": "uint64"},
    FieldDescriptor.TYPE_FLOAT: {"type": "number", "format": "float"},
    FieldDescriptor.TYPE_DOUBLE: {"type": "number", "format": "double"},
    FieldDescriptor.TYPE_STRING: {"type": "string"},
    FieldDescriptor.TYPE_BYTES: {"type": "string", "format": "byte"},
}


def _is_repeated(field: FieldDescriptor) -> bool:
    return field.label == FieldDescriptor.LABEL_REPEATED


def _is_map(field: FieldDescriptor) -> bool:
    return (
        field.message_type is not None
        and _is_repeated(field)
        and field.message_type.GetOptions().map_entry
    )


def _value_schema(field: FieldDescriptor, stack: frozenset[str]) -> JsonSchema:
    if field.type == FieldDescriptor.TYPE_ENUM:
        return {"type": "string", "enum": [value.name for value in field.enum_type.values]}
    if field.message_type is not None:
        return _message_schema(field.message_type, stack)
    return dict(_SCALAR_SCHEMAS[field.type])


def _field_schema(field: FieldDescriptor, stack: frozenset[str]) -> JsonSchema:
    if _is_map(field):
        value_field = field.message_type.fields_by_name["value"]
        return {"type": "object", "additionalProperties": _value_schema(value_field, stack)}
    schema = _value_schema(field, stack)
    if _is_repeated(field):
        return {"type": "array", "items": schema}
    return schema


def _message_schema(descriptor: Descriptor, stack: frozenset[str]) -> JsonSchema:
    if descriptor.full_name in stack:
        return {"type": "object"}
    if not descriptor.fields:
        return {}
    stack = stack | {descriptor.full_name}
    return {
        "type": "object",
        "properties": {field.json_name: _field_schema(field, stack) for field in descriptor.fields},
    }


def message_schema(message_type: type[Message]) -> JsonSchema:
    """Describe a message type as a JSON Schema.

    Recursive message types are cut at the first repetition with a bare
    ``object`` schema. A message without fields has an empty schema.
    """
    return _message_schema(message_type.DESCRIPTOR, frozenset())


def _message_type(tp: Any) -> type[Message]:  # noqa: ANN401
    if not (isinstance(tp, type) and issubclass(tp, Message)):
        raise RegistrationError(f"protobuf bodies must be message types, not {tp!r}")
    return tp


class ProtoRequestReader(Generic[M]):
    """Reads ``application/x-protobuf`` bodies into ``message_type``.

    A message type without fields describes a request without a body; its
    requests are accepted whatever their content type.
    """

    def __init__(self, message_type: type[M]) -> None:
        self.message_type = _message_type(message_type)

    def spec(self) -> oas.RequestBody | None:
        if not self.message_type.DESCRIPTOR.fields:
            return None
        return request_body(PROTOBUF_CONTENT_TYPE, message_schema(self.message_type))

    async def read_request(self, ctx: Context) -> M:
        if self.message_type.DESCRIPTOR.fields:
            content_type = ctx.request.headers.get("content-type", "")
            if content_type != PROTOBUF_CONTENT_TYPE:
                raise BadRequestError(InvalidContentTypeError(content_type))

        message = self.message_type()
        try:
            message.ParseFromString(await ctx.request.body())
        except DecodeError as exc:
            raise BadRequestError(exc) from exc
        return message


class ProtoResponseWriter(Generic[M]):
    """Writes messages as ``application/x-protobuf``."""

    def __init__(self, message_type: type[M]) -> None:
        self.message_type = _message_type(message_type)

    def spec(self) -> tuple[int, oas.Response]:
        return status.HTTP_200_OK, response(
            "OK", PROTOBUF_CONTENT_TYPE, message_schema(self.message_type)
        )

    async def write_response(self, ctx: Context, value: M) -> Response:
        return Response(
            value.SerializeToString(),
            status_code=status.HTTP_200_OK,
            media_type=PROTOBUF_CONTENT_TYPE,
        )


def consume_proto(handler: EndpointLike, *, request_type: Any = UNSET) -> Endpoint[Any, Any]:  # noqa: ANN401
    """Read the handler's request message from a protobuf body."""
    endpoint = Endpoint.of(handler)
    if request_type is UNSET:
        request_type = endpoint.request_type
    return endpoint.with_reader(ProtoRequestReader(request_type))


def return_proto(handler: EndpointLike, *, response_type: Any = UNSET) -> Endpoint[Any, Any]:  # noqa: ANN401
    """Write the handler's response message as a protobuf body."""
    endpoint = Endpoint.of(handler)
    if response_type is UNSET:
        response_type = endpoint.response_type
    return endpoint.with_writer(ProtoResponseWriter(response_type))


def handle_proto(
    handler: EndpointLike,
    *,
    request_type: Any = UNSET,  # noqa: ANN401
    response_type: Any = UNSET,  # noqa: ANN401
) -> Endpoint[Any, Any]:
    """Read and write protobuf bodies."""
    return consume_proto(
        return_proto(handler, response_type=response_type), request_type=request_type
    )


def produce_proto(
    producer: Producer[Any] | ProducerFunc[Any],
    *,
    response_type: Any = UNSET,  # noqa: ANN401
) -> Endpoint[Any, Any]:
    """Serve a producer's message; the request body is ignored."""
    return return_proto(ProducerHandler(producer), response_type=response_type)


def consume_only_proto(
    consumer: Consumer[Any] | ConsumerFunc[Any],
    *,
    request_type: Any = UNSET,  # noqa: ANN401
) -> Endpoint[Any, Any]:
    """Feed a protobuf body to a consumer and answer with an empty 200."""
    return consume_proto(ConsumerHandler(consumer), request_type=request_type)
