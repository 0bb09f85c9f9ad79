"""Declarative request parameters, validators and security schemes.

A parameter declaration is an operation option::

    handle(
        "GET",
        "/search",
        handler,
        query_param("q", required(), regex(r"^\\w+$")),
        header("Authorization", required(), jwt_auth("jwt", verifier)),
    )

Every declared parameter installs one injection interceptor, which copies the
raw values from the request into the context, and contributes a parameter
descriptor to the OpenAPI operation. Options add validators (``required``,
``regex``), authentication (``jwt_auth``) or security scheme components
(``api_key``, ``basic_auth``, ``oauth2``, ``openid_connect``).

Handlers read injected values with ``cookie_value``, ``header_value``,
``query_param_value`` and ``path_param_value``.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

from fastapi.openapi import models as oas
from starlette.requests import Request
from starlette.responses import Response

from loam.rest.context import Context
from loam.rest.errors import (
    BadRequestError,
    InvalidJWTError,
    InvalidParameterValueError,
    MissingRequiredParameterError,
    UnauthorizedError,
    UnsupportedSecuritySchemeError,
)
from loam.rest.interceptor import Next

if TYPE_CHECKING:
    from loam.rest.openapi import SecurityScheme
    from loam.rest.operation import OperationOption, OperationOptions

BEARER_PREFIX: Final[str] = "Bearer "


class ParameterLocation(StrEnum):
    """Where a parameter is carried in the request."""

    COOKIE = "cookie"
    HEADER = "header"
    QUERY = "query"
    PATH = "path"


@dataclass(frozen=True)
class Cookie:
    """One cookie sent by the client."""

    name: str
    value: str


@dataclass(frozen=True)
class _ParameterKey:
    location: ParameterLocation
    name: str


def _key(name: str, location: ParameterLocation) -> _ParameterKey:
    # Header names are case-insensitive
    if location is ParameterLocation.HEADER:
        name = name.lower()
    return _ParameterKey(location, name)


def _cookies(request: Request, name: str) -> list[Cookie]:
    cookies = []
    for header in request.headers.getlist("cookie"):
        for chunk in header.split(";"):
            key, sep, value = chunk.strip().partition("=")
            if not sep or key.strip() != name:
                continue
            value = value.strip()
            if len(value) > 1 and value[0] == value[-1] == '"':
                value = value[1:-1]
            cookies.append(Cookie(name, value))
    return cookies


def _extract(request: Request, name: str, location: ParameterLocation) -> Any:  # noqa: ANN401
    if location is ParameterLocation.COOKIE:
        return _cookies(request, name)
    if location is ParameterLocation.HEADER:
        return request.headers.getlist(name)
    if location is ParameterLocation.QUERY:
        return request.query_params.getlist(name)
    return str(request.path_params.get(name, ""))


def _string_values(value: Any) -> list[str]:  # noqa: ANN401
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [item.value if isinstance(item, Cookie) else str(item) for item in value]


def _is_empty(value: Any) -> bool:  # noqa: ANN401
    return value is None or len(value) == 0


class ParameterOptions:
    """Collects what the options of one parameter declaration contribute."""

    def __init__(
        self, operation: OperationOptions, name: str, location: ParameterLocation
    ) -> None:
        self.operation = operation
        self.name = name
        self.location = location
        self.required = location is ParameterLocation.PATH
        self.description: str | None = None
        self.pattern: str | None = None
        self.key = _key(name, location)
        self._injection_registered = False

    def inject(self) -> None:
        """Register this parameter's injection interceptor, once."""
        if self._injection_registered:
            return
        self.operation.injection_interceptors.append(
            injection_interceptor(self.name, self.location)
        )
        self._injection_registered = True

    def add_validator(self, interceptor: Callable[[Next], Next]) -> None:
        """Register a validator, which always runs after injection."""
        self.inject()
        self.operation.validation_interceptors.append(interceptor)

    def add_authenticator(self, interceptor: Callable[[Next], Next]) -> None:
        """Register an authenticator, which runs after every validator."""
        self.inject()
        self.operation.authentication_interceptors.append(interceptor)

    def add_security_scheme(self, name: str, scheme: SecurityScheme) -> None:
        """Declare that the operation is secured by ``scheme``."""
        self.operation.security_schemes[name] = scheme

    def descriptor(self) -> oas.Parameter:
        """Build the OpenAPI parameter object."""
        schema: dict[str, Any] = {"type": "string"}
        if self.pattern is not None:
            schema["pattern"] = self.pattern
        data: dict[str, Any] = {
            "name": self.name,
            "in": self.location.value,
            "schema": schema,
        }
        if self.required:
            data["required"] = True
        if self.description:
            data["description"] = self.description
        return oas.Parameter.model_validate(data)


type ParameterOption = Callable[[ParameterOptions], None]


def injection_interceptor(name: str, location: ParameterLocation) -> Callable[[Next], Next]:
    """Build the interceptor copying a parameter's raw values into the context.

    Values are stored as ``list[Cookie]`` for cookies, ``list[str]`` for
    headers and query parameters, and ``str`` for path parameters.
    """
    key = _key(name, location)

    def interceptor(next_: Next) -> Next:
        async def serve(ctx: Context) -> Response:
            return await next_(ctx.with_value(key, _extract(ctx.request, name, location)))

        return serve

    return interceptor


def parameter(
    name: str, location: ParameterLocation, *options: ParameterOption
) -> OperationOption:
    """Declare a parameter carried at ``location``."""

    def apply(operation: OperationOptions) -> None:
        po = ParameterOptions(operation, name, location)
        for option in options:
            option(po)
        po.inject()
        operation.parameters.append(po.descriptor())

    return apply


def cookie(name: str, *options: ParameterOption) -> OperationOption:
    """Declare a cookie parameter."""
    return parameter(name, ParameterLocation.COOKIE, *options)


def header(name: str, *options: ParameterOption) -> OperationOption:
    """Declare a header parameter."""
    return parameter(name, ParameterLocation.HEADER, *options)


def query_param(name: str, *options: ParameterOption) -> OperationOption:
    """Declare a query string parameter."""
    return parameter(name, ParameterLocation.QUERY, *options)


def path_param(name: str, *options: ParameterOption) -> OperationOption:
    """Declare a path parameter; ``Path.param`` does this implicitly."""
    return parameter(name, ParameterLocation.PATH, *options)


def required() -> ParameterOption:
    """Reject requests where the parameter is absent or empty.

    Empty means no cookie, header or query value at all, or an empty path
    variable. The failure is ``BadRequestError(MissingRequiredParameterError)``.
    """

    def apply(po: ParameterOptions) -> None:
        po.required = True
        key, name, location = po.key, po.name, po.location

        def validator(next_: Next) -> Next:
            async def serve(ctx: Context) -> Response:
                if _is_empty(ctx.value(key)):
                    raise BadRequestError(MissingRequiredParameterError(name, location))
                return await next_(ctx)

            return serve

        po.add_validator(validator)

    return apply


def regex(pattern: str | re.Pattern[str]) -> ParameterOption:
    """Require at least one value of the parameter to match ``pattern``.

    Matching uses ``re.search``, so anchor the pattern to match whole values.
    The failure is ``BadRequestError(InvalidParameterValueError)``.
    """
    compiled = re.compile(pattern)

    def apply(po: ParameterOptions) -> None:
        po.pattern = compiled.pattern
        key, name, location = po.key, po.name, po.location

        def validator(next_: Next) -> Next:
            async def serve(ctx: Context) -> Response:
                values = _string_values(ctx.value(key))
                if not any(compiled.search(value) for value in values):
                    raise BadRequestError(InvalidParameterValueError(name, location))
                return await next_(ctx)

            return serve

        po.add_validator(validator)

    return apply


@runtime_checkable
class JWTVerifier(Protocol):
    """Verifies a bearer token and returns the context to continue with."""

    async def verify(self, ctx: Context, token: str) -> Context:
        """Verify ``token``; raise to reject it.

        Claims are handed to the handler by returning ``ctx.with_value(...)``.
        """
        ...


type JWTVerifierFunc = Callable[[Context, str], Awaitable[Context | None]]


def _bearer_token(values: Sequence[str], name: str, location: ParameterLocation) -> str:
    if not values or not values[0]:
        raise BadRequestError(
            InvalidJWTError(name, location, f"missing {name} {location}")
        )
    value = values[0]
    if not value.startswith(BEARER_PREFIX):
        raise BadRequestError(
            InvalidJWTError(
                name, location, f"malformed {name} {location}: expected Bearer scheme"
            )
        )
    token = value.removeprefix(BEARER_PREFIX)
    if not token:
        raise BadRequestError(
            InvalidJWTError(name, location, f"malformed {name} {location}: empty token")
        )
    return token


def jwt_auth(scheme_name: str, verifier: JWTVerifier | JWTVerifierFunc) -> ParameterOption:
    """Authenticate requests with a bearer JWT carried by the parameter.

    The first value must be ``Bearer <token>`` (prefix is case-sensitive).
    A missing or malformed value fails with ``BadRequestError(InvalidJWTError)``;
    a token the verifier rejects fails with ``UnauthorizedError(InvalidJWTError)``.
    On success the context returned by the verifier replaces the request
    context.

    Args:
        scheme_name: Name of the HTTP bearer security scheme component.
        verifier: A ``JWTVerifier`` or an async ``(ctx, token) -> ctx`` callable.
    """
    verify: JWTVerifierFunc = (
        verifier.verify if isinstance(verifier, JWTVerifier) else verifier
    )
    scheme = oas.HTTPBearer.model_validate(
        {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
    )

    def apply(po: ParameterOptions) -> None:
        key, name, location = po.key, po.name, po.location
        po.add_security_scheme(scheme_name, scheme)

        def authenticator(next_: Next) -> Next:
            async def serve(ctx: Context) -> Response:
                token = _bearer_token(_string_values(ctx.value(key)), name, location)
                try:
                    verified = await verify(ctx, token)
                except Exception as exc:
                    raise UnauthorizedError(InvalidJWTError(name, location, exc)) from exc
                return await next_(verified if verified is not None else ctx)

            return serve

        po.add_authenticator(authenticator)

    return apply


def api_key(scheme_name: str) -> ParameterOption:
    """Declare the parameter as an API key security scheme.

    Raises:
        UnsupportedSecuritySchemeError: When applied to a path parameter.
    """

    def apply(po: ParameterOptions) -> None:
        if po.location is ParameterLocation.PATH:
            raise UnsupportedSecuritySchemeError(
                scheme_name, "API keys are carried in a header, query or cookie"
            )
        po.add_security_scheme(
            scheme_name,
            oas.APIKey.model_validate(
                {"type": "apiKey", "in": po.location.value, "name": po.name}
            ),
        )

    return apply


def basic_auth(scheme_name: str) -> ParameterOption:
    """Declare HTTP basic authentication."""

    def apply(po: ParameterOptions) -> None:
        po.add_security_scheme(
            scheme_name, oas.HTTPBase.model_validate({"type": "http", "scheme": "basic"})
        )

    return apply


def oauth2(
    scheme_name: str, flows: oas.OAuthFlows | dict[str, Any] | None = None
) -> ParameterOption:
    """Declare an OAuth2 security scheme with the given flows."""
    scheme = oas.OAuth2.model_validate(
        {"type": "oauth2", "flows": flows if flows is not None else {}}
    )

    def apply(po: ParameterOptions) -> None:
        po.add_security_scheme(scheme_name, scheme)

    return apply


def openid_connect(scheme_name: str, url: str) -> ParameterOption:
    """Declare an OpenID Connect scheme discovered at ``url``."""
    scheme = oas.OpenIdConnect.model_validate(
        {"type": "openIdConnect", "openIdConnectUrl": url}
    )

    def apply(po: ParameterOptions) -> None:
        po.add_security_scheme(scheme_name, scheme)

    return apply


def mutual_tls(scheme_name: str) -> ParameterOption:
    """Mutual TLS cannot be enforced at this layer.

    Raises:
        UnsupportedSecuritySchemeError: Always, when the option is applied.
    """

    def apply(po: ParameterOptions) -> None:
        raise UnsupportedSecuritySchemeError(
            scheme_name, "mutual TLS must be terminated by the server or proxy"
        )

    return apply


def _slot(ctx: Context, name: str, location: ParameterLocation) -> Any:  # noqa: ANN401
    key = _key(name, location)
    if key not in ctx:
        raise KeyError(f"{location} parameter {name!r} is not declared for this operation")
    return ctx.value(key)


def cookie_value(ctx: Context, name: str) -> list[Cookie]:
    """Cookies named ``name`` sent with the request."""
    return _slot(ctx, name, ParameterLocation.COOKIE)


def header_value(ctx: Context, name: str) -> list[str]:
    """Values of the ``name`` header."""
    return _slot(ctx, name, ParameterLocation.HEADER)


def query_param_value(ctx: Context, name: str) -> list[str]:
    """Values of the ``name`` query parameter."""
    return _slot(ctx, name, ParameterLocation.QUERY)


def path_param_value(ctx: Context, name: str) -> str:
    """Value of the ``name`` path variable."""
    return _slot(ctx, name, ParameterLocation.PATH)
