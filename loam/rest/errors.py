"""Exception hierarchy of the operation pipeline.

Key components:
- **ErrorCode enum**: Problem type slugs for every framework error kind
- **LoamError**: Base exception carrying a message and an optional cause
- **Request errors**: Parameter, content type and JWT failures, wrapped in
  ``BadRequestError`` or ``UnauthorizedError`` which know how to render
  themselves as HTTP responses
- **Registration errors**: Mistakes in an Api declaration, raised while the
  Api is being built so the process never starts serving

Wrapping uses both an explicit ``cause`` attribute and ``__cause__``, so
``find_error`` can look through either.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

from starlette import status
from starlette.responses import Response

if TYPE_CHECKING:
    from loam.rest.context import Context

E = TypeVar("E", bound=BaseException)


class ErrorCode(Enum):
    """Problem type slugs appended to a custom Problem Details base URI."""

    BAD_REQUEST = "bad-request"
    MISSING_REQUIRED_PARAMETER = "missing-required-parameter"
    INVALID_PARAMETER_VALUE = "invalid-parameter-value"
    INVALID_CONTENT_TYPE = "invalid-content-type"
    INVALID_JWT_FORMAT = "invalid-jwt-format"
    INVALID_JWT = "invalid-jwt"
    UNAUTHORIZED = "unauthorized"
    INTERNAL_ERROR = "internal-error"


@runtime_checkable
class HttpResponseWriter(Protocol):
    """An error that knows which HTTP response describes it."""

    def write_http_response(self, ctx: Context) -> Response:
        """Build the response sent to the client for this error."""
        ...


class LoamError(Exception):
    """Base class for all framework exceptions.

    Args:
        message: Human-readable error message
        cause: The exception this error wraps, if any
    """

    def __init__(self, message: str, cause: BaseException | str | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)
        if isinstance(cause, BaseException):
            self.__cause__ = cause

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class ParameterError(LoamError):
    """Base for errors about one declared request parameter."""

    def __init__(
        self,
        message: str,
        parameter: str,
        location: str,
        cause: BaseException | str | None = None,
    ) -> None:
        self.parameter = parameter
        self.location = location
        super().__init__(message, cause)


class MissingRequiredParameterError(ParameterError):
    """A required parameter was absent or empty."""

    def __init__(self, parameter: str, location: str) -> None:
        super().__init__(
            f"missing required request parameter in {location}: {parameter}",
            parameter,
            location,
        )


class InvalidParameterValueError(ParameterError):
    """No value of a parameter matched its declared format."""

    def __init__(self, parameter: str, location: str) -> None:
        super().__init__(
            f"invalid parameter value in {location}: {parameter}",
            parameter,
            location,
        )


class InvalidJWTError(ParameterError):
    """A bearer token was missing, malformed or rejected by its verifier."""

    def __init__(
        self, parameter: str, location: str, cause: BaseException | str
    ) -> None:
        super().__init__(
            f"invalid JWT in {location} {parameter}: {cause}",
            parameter,
            location,
            cause,
        )


class InvalidContentTypeError(LoamError):
    """The request body was sent with an unsupported content type."""

    def __init__(self, content_type: str) -> None:
        self.content_type = content_type
        super().__init__(f"invalid content type: {content_type}")


class BadRequestError(LoamError):
    """The request could not be processed; rendered as an empty 400."""

    def __init__(self, cause: BaseException | str) -> None:
        super().__init__(f"bad request: {cause}", cause)

    def write_http_response(self, ctx: Context) -> Response:
        """Render an empty 400 response."""
        return Response(status_code=status.HTTP_400_BAD_REQUEST)


class UnauthorizedError(LoamError):
    """The request could not be authenticated; rendered as an empty 401."""

    def __init__(self, cause: BaseException | str) -> None:
        super().__init__(f"unauthorized: {cause}", cause)

    def write_http_response(self, ctx: Context) -> Response:
        """Render an empty 401 response."""
        return Response(status_code=status.HTTP_401_UNAUTHORIZED)


class FormFieldError(LoamError):
    """A form value could not be decoded into its target field."""

    def __init__(self, field: str, cause: BaseException | str) -> None:
        self.field = field
        super().__init__(f"failed to set field {field}: {cause}", cause)


class RegistrationError(LoamError):
    """An Api declaration is invalid; raised while the Api is built."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class DuplicateOperationError(RegistrationError):
    """The same method and path were registered twice."""

    def __init__(self, method: str, path: str) -> None:
        self.method = method
        self.path = path
        super().__init__(f"operation already registered: {method} {path}")


class DuplicatePathParameterError(RegistrationError):
    """A path declares two parameters with the same name."""

    def __init__(self, path: str, parameter: str) -> None:
        self.path = path
        self.parameter = parameter
        super().__init__(f"duplicate path parameter {parameter!r} in {path}")


class UnsupportedSecuritySchemeError(RegistrationError):
    """The security scheme cannot be enforced by the framework."""

    def __init__(self, scheme: str, reason: str) -> None:
        self.scheme = scheme
        super().__init__(f"unsupported security scheme {scheme!r}: {reason}")


class SecuritySchemeConflictError(RegistrationError):
    """One security scheme name was registered with two definitions."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"security scheme {name!r} registered with conflicting definitions")


def find_error(exc: BaseException | None, error_type: type[E]) -> E | None:
    """Find the first exception of ``error_type`` in a chain of wrapped errors.

    The chain is followed through ``cause`` attributes and ``__cause__``.

    Args:
        exc: The outermost exception.
        error_type: The type to look for.

    Returns:
        E | None: The matching exception, or None if the chain has none.
    """
    seen: set[int] = set()
    current: object = exc
    while isinstance(current, BaseException) and id(current) not in seen:
        if isinstance(current, error_type):
            return current
        seen.add(id(current))
        cause = getattr(current, "cause", None)
        current = cause if isinstance(cause, BaseException) else current.__cause__
    return None
