"""Multipart form request bodies.

The handler receives Starlette's ``FormData``: plain fields as strings and
file parts as ``UploadFile``. Uploaded files are closed with the request once
the endpoint is done with it. The OpenAPI schema of the body is reflected
from an optional ``schema`` type describing the expected parts.
"""

from typing import Any, Final

from fastapi.openapi import models as oas
from starlette.datastructures import FormData
from starlette.exceptions import HTTPException

from loam.rest.context import Context
from loam.rest.errors import BadRequestError, InvalidContentTypeError
from loam.rest.form import media_type
from loam.rest.handler import Consumer, ConsumerFunc, ConsumerHandler, Endpoint, EndpointLike
from loam.rest.openapi import reflect_schema, request_body

MULTIPART_CONTENT_TYPE: Final[str] = "multipart/form-data"


class MultipartRequestReader:
    """Parses ``multipart/form-data`` bodies.

    Only the media type is compared; the boundary parameter is required by
    the parser itself.
    """

    def __init__(self, schema: Any = None) -> None:  # noqa: ANN401
        self.schema = schema

    def spec(self) -> oas.RequestBody:
        schema = {"type": "object"} if self.schema is None else reflect_schema(self.schema)
        return request_body(MULTIPART_CONTENT_TYPE, schema)

    async def read_request(self, ctx: Context) -> FormData:
        content_type = ctx.request.headers.get("content-type", "")
        if media_type(content_type) != MULTIPART_CONTENT_TYPE:
            raise BadRequestError(InvalidContentTypeError(content_type))

        try:
            return await ctx.request.form()
        except HTTPException as exc:
            # Starlette reports malformed multipart bodies as a 400 HTTPException
            raise BadRequestError(exc.detail) from exc


def consume_multipart(handler: EndpointLike, *, schema: Any = None) -> Endpoint[Any, Any]:  # noqa: ANN401
    """Hand the parsed multipart body to the handler.

    Args:
        handler: A handler taking ``FormData``, or an endpoint.
        schema: Type describing the parts in the OpenAPI document.
    """
    return Endpoint.of(handler).with_reader(MultipartRequestReader(schema))


def consume_only_multipart(
    consumer: Consumer[FormData] | ConsumerFunc[FormData],
    *,
    schema: Any = None,  # noqa: ANN401
) -> Endpoint[Any, Any]:
    """Feed a multipart body to a consumer and answer with an empty 200."""
    return consume_multipart(ConsumerHandler(consumer), schema=schema)
