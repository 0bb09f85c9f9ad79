"""Unit tests for loam/rest/proto.py."""

from collections.abc import Callable

import pytest
from google.protobuf.descriptor_pb2 import DescriptorProto
from google.protobuf.duration_pb2 import Duration
from google.protobuf.empty_pb2 import Empty
from google.protobuf.struct_pb2 import Struct
from google.protobuf.wrappers_pb2 import BytesValue

from loam.rest.context import Context
from loam.rest.errors import BadRequestError, InvalidContentTypeError, RegistrationError, find_error
from loam.rest.proto import (
    PROTOBUF_CONTENT_TYPE,
    consume_only_proto,
    consume_proto,
    handle_proto,
    message_schema,
    produce_proto,
)

type ContextFactory = Callable[..., Context]

PROTO_HEADERS = [("content-type", PROTOBUF_CONTENT_TYPE)]


async def double(ctx: Context, req: Duration) -> Duration:
    return Duration(seconds=req.seconds * 2, nanos=req.nanos * 2)


async def ping(ctx: Context, req: Empty) -> Duration:
    return Duration(seconds=1)


@pytest.mark.unit
class TestMessageSchema:
    """Test schemas derived from message descriptors."""

    def test_scalar_fields(self) -> None:
        """Test that scalar fields map to typed schemas under JSON names."""
        assert message_schema(Duration) == {
            "type": "object",
            "properties": {
                "seconds": {"type": "integer", "format": "int64"},
                "nanos": {"type": "integer", "format": "int32"},
            },
        }

    def test_bytes_field(self) -> None:
        """Test that bytes are described as base64 strings."""
        assert message_schema(BytesValue)["properties"]["value"] == {
            "type": "string",
            "format": "byte",
        }

    def test_empty_message(self) -> None:
        """Test that a message without fields has an empty schema."""
        assert message_schema(Empty) == {}

    def test_repeated_and_recursive(self) -> None:
        """Test that repeated fields are arrays and recursion is cut."""
        properties = message_schema(DescriptorProto)["properties"]

        assert properties["name"] == {"type": "string"}
        assert properties["nestedType"] == {"type": "array", "items": {"type": "object"}}
        field_items = properties["field"]["items"]
        assert field_items["properties"]["label"]["type"] == "string"
        assert "LABEL_REPEATED" in field_items["properties"]["label"]["enum"]

    def test_map_fields(self) -> None:
        """Test that maps become objects with typed values."""
        fields = message_schema(Struct)["properties"]["fields"]

        assert fields["type"] == "object"
        value = fields["additionalProperties"]
        assert value["properties"]["numberValue"] == {"type": "number", "format": "double"}
        assert value["properties"]["structValue"] == {"type": "object"}
        assert value["properties"]["nullValue"] == {"type": "string", "enum": ["NULL_VALUE"]}


@pytest.mark.unit
class TestProtoBodies:
    """Test reading and writing protobuf bodies."""

    async def test_round_trip(self, make_context: ContextFactory) -> None:
        """Test that a message is decoded, handled and encoded."""
        body = Duration(seconds=3, nanos=5).SerializeToString()

        written = await handle_proto(double).serve(make_context(headers=PROTO_HEADERS, body=body))

        assert written.status_code == 200
        assert written.headers["content-type"] == PROTOBUF_CONTENT_TYPE
        assert Duration.FromString(written.body) == Duration(seconds=6, nanos=10)

    async def test_empty_request_needs_no_content_type(self, make_context: ContextFactory) -> None:
        """Test that a fieldless request message accepts any request."""
        endpoint = handle_proto(ping)

        written = await endpoint.serve(make_context())

        assert endpoint.request_body() is None
        assert Duration.FromString(written.body).seconds == 1

    async def test_wrong_content_type(self, make_context: ContextFactory) -> None:
        """Test that other content types are a bad request."""
        ctx = make_context(headers=[("content-type", "application/octet-stream")])

        with pytest.raises(BadRequestError) as exc_info:
            await handle_proto(double).serve(ctx)

        assert find_error(exc_info.value, InvalidContentTypeError) is not None

    async def test_malformed_body(self, make_context: ContextFactory) -> None:
        """Test that undecodable bytes are a bad request."""
        with pytest.raises(BadRequestError):
            await handle_proto(double).serve(make_context(headers=PROTO_HEADERS, body=b"\x08"))

    async def test_producer_and_consumer(self, make_context: ContextFactory) -> None:
        """Test the one-sided adapters."""
        seen: list[Duration] = []

        async def produce(ctx: Context) -> Duration:
            return Duration(nanos=7)

        async def consume(ctx: Context, req: Duration) -> None:
            seen.append(req)

        produced = await produce_proto(produce).serve(make_context())
        consumed = await consume_only_proto(consume).serve(
            make_context(headers=PROTO_HEADERS, body=Duration(seconds=9).SerializeToString())
        )

        assert Duration.FromString(produced.body).nanos == 7
        assert consumed.status_code == 200
        assert seen == [Duration(seconds=9)]

    def test_request_body_spec(self) -> None:
        """Test the documented request body."""
        spec = consume_proto(double).request_body()
        assert spec is not None

        assert set(spec.model_dump(exclude_none=True)["content"]) == {PROTOBUF_CONTENT_TYPE}

    def test_non_message_types_rejected(self) -> None:
        """Test that only message types can be protobuf bodies."""

        async def handler(ctx: Context, req: dict) -> Duration:  # type: ignore[type-arg]
            return Duration()

        with pytest.raises(RegistrationError):
            consume_proto(handler)
