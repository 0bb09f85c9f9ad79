"""JSON response classes serialized with orjson.

orjson handles datetimes, UUIDs, dataclasses and enums natively and is much
faster than the standard ``json`` module. Keys keep their insertion order, so
a response body mirrors the field order of the value it was built from.
"""

from typing import Any

import orjson
from pydantic import BaseModel
from starlette.responses import JSONResponse


class ORJSONResponse(JSONResponse):
    """JSON response rendered with orjson.

    Attributes:
        media_type: The media type for the response.
    """

    media_type = "application/json"

    def render(self, content: Any) -> bytes:  # noqa: ANN401 - accepts any JSON-serializable content
        """Render the content as JSON using orjson.

        Args:
            content: The content to serialize to JSON.

        Returns:
            bytes: The JSON-encoded bytes.
        """
        if isinstance(content, BaseModel):
            content = content.model_dump(mode="json")
        return orjson.dumps(content)


class ProblemJSONResponse(ORJSONResponse):
    """RFC 7807 Problem Details response."""

    media_type = "application/problem+json"
