"""RFC 7807 Problem Details error responses.

Key components:
- **ProblemDetail**: An exception that is also a problem document. Subclass
  it to add extension members; every dataclass field is serialized
- **ProblemDetailsErrorHandler**: An operation error handler answering every
  failure with ``application/problem+json``

The handler never echoes exception messages for errors it does not own: a
framework error gets a fixed, generic title and detail, and anything else is
reported as an opaque internal error.
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Final

from starlette import status
from starlette.responses import Response

from loam.rest.context import Context
from loam.rest.error_handler import log_error
from loam.rest.errors import (
    BadRequestError,
    ErrorCode,
    HttpResponseWriter,
    InvalidContentTypeError,
    InvalidJWTError,
    InvalidParameterValueError,
    MissingRequiredParameterError,
    UnauthorizedError,
    find_error,
)
from loam.rest.responses import ProblemJSONResponse

ABOUT_BLANK: Final[str] = "about:blank"


@dataclass(kw_only=True, eq=False)
class ProblemDetail(Exception):  # noqa: N818
    """A problem document raised as an exception.

    Example:
        >>> @dataclass(kw_only=True, eq=False)
        ... class OutOfCredit(ProblemDetail):
        ...     balance: int = 0
        >>> raise OutOfCredit(title="Out of credit", status=403, balance=30)

    Attributes:
        type: URI identifying the problem type.
        title: Short summary of the problem type.
        status: HTTP status code of the response.
        detail: Explanation specific to this occurrence; omitted when empty.
        instance: URI of this occurrence; omitted when empty.
    """

    type: str = ABOUT_BLANK
    title: str = ""
    status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: str = ""
    instance: str = ""

    def __str__(self) -> str:
        return self.detail or self.title

    def to_dict(self) -> dict[str, Any]:
        """Return the problem members, extension fields included."""
        data = dataclasses.asdict(self)
        for member in ("detail", "instance"):
            if not data.get(member):
                data.pop(member, None)
        return data

    def write_http_response(self, ctx: Context) -> Response:
        """Render the problem at its own status."""
        return ProblemJSONResponse(content=self.to_dict(), status_code=self.status)


# Generic status, title and detail per problem kind
_PROBLEMS: Final[dict[ErrorCode, tuple[int, str, str]]] = {
    ErrorCode.MISSING_REQUIRED_PARAMETER: (
        status.HTTP_400_BAD_REQUEST,
        "Missing Required Parameter",
        "A required request parameter is missing.",
    ),
    ErrorCode.INVALID_PARAMETER_VALUE: (
        status.HTTP_400_BAD_REQUEST,
        "Invalid Parameter Value",
        "A request parameter has an invalid value.",
    ),
    ErrorCode.INVALID_CONTENT_TYPE: (
        status.HTTP_400_BAD_REQUEST,
        "Invalid Content Type",
        "The request content type is not supported.",
    ),
    ErrorCode.INVALID_JWT_FORMAT: (
        status.HTTP_400_BAD_REQUEST,
        "Invalid JWT Format",
        "The bearer token is missing or malformed.",
    ),
    ErrorCode.BAD_REQUEST: (
        status.HTTP_400_BAD_REQUEST,
        "Bad Request",
        "The request was malformed or invalid.",
    ),
    ErrorCode.INVALID_JWT: (
        status.HTTP_401_UNAUTHORIZED,
        "Invalid JWT Token",
        "The bearer token could not be verified.",
    ),
    ErrorCode.UNAUTHORIZED: (
        status.HTTP_401_UNAUTHORIZED,
        "Unauthorized",
        "The request could not be authenticated.",
    ),
    ErrorCode.INTERNAL_ERROR: (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        "An internal server error occurred.",
    ),
}

_BAD_REQUEST_CAUSES: Final[tuple[tuple[type[Exception], ErrorCode], ...]] = (
    (MissingRequiredParameterError, ErrorCode.MISSING_REQUIRED_PARAMETER),
    (InvalidParameterValueError, ErrorCode.INVALID_PARAMETER_VALUE),
    (InvalidContentTypeError, ErrorCode.INVALID_CONTENT_TYPE),
    (InvalidJWTError, ErrorCode.INVALID_JWT_FORMAT),
)


def classify(exc: BaseException) -> ErrorCode | None:
    """Return the problem kind of a framework error.

    Only the raised error itself is matched; a framework error wrapped inside
    another exception is an internal error. The cause of a matched error is
    searched for the specific kind.

    Returns:
        ErrorCode | None: None for errors the framework does not know.
    """
    if isinstance(exc, BadRequestError):
        for cause_type, code in _BAD_REQUEST_CAUSES:
            if find_error(exc.cause, cause_type) is not None:
                return code
        return ErrorCode.BAD_REQUEST

    if isinstance(exc, UnauthorizedError):
        if find_error(exc.cause, InvalidJWTError) is not None:
            return ErrorCode.INVALID_JWT
        return ErrorCode.UNAUTHORIZED

    if isinstance(exc, HttpResponseWriter):
        return ErrorCode.INTERNAL_ERROR
    return None


class ProblemDetailsErrorHandler:
    """Operation error handler answering with Problem Details.

    Use it with ``on_error(ProblemDetailsErrorHandler())``. Errors are handled
    in three tiers: a raised ``ProblemDetail`` is sent as is, known framework
    errors get a standard problem, and everything else is a generic 500.

    Args:
        default_type: Base URI of problem types. With ``about:blank`` the
            type of every generated problem is ``about:blank``; any other base
            has the problem slug appended, e.g. ``https://errors.example.com/``
            gives ``https://errors.example.com/invalid-jwt``.
    """

    def __init__(self, default_type: str = ABOUT_BLANK) -> None:
        self.default_type = default_type

    def problem_type(self, code: ErrorCode) -> str:
        """Return the type URI of a problem kind."""
        if self.default_type == ABOUT_BLANK:
            return ABOUT_BLANK
        return self.default_type + code.value

    def problem_for(self, exc: BaseException) -> ProblemDetail:
        """Build the problem document describing ``exc``."""
        if isinstance(exc, ProblemDetail):
            return exc

        code = classify(exc)
        if code is None:
            status_code, title, detail = _PROBLEMS[ErrorCode.INTERNAL_ERROR]
            return ProblemDetail(
                type=self.default_type, title=title, status=status_code, detail=detail
            )

        status_code, title, detail = _PROBLEMS[code]
        return ProblemDetail(
            type=self.problem_type(code), title=title, status=status_code, detail=detail
        )

    async def __call__(self, ctx: Context, exc: Exception) -> Response:
        """Log ``exc`` and answer with its problem document."""
        log_error(ctx, exc)
        return self.problem_for(exc).write_http_response(ctx)
