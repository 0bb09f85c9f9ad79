"""Unit tests for loam/rest/errors.py."""

from collections.abc import Callable

import pytest

from loam.rest.context import Context
from loam.rest.errors import (
    BadRequestError,
    DuplicateOperationError,
    FormFieldError,
    HttpResponseWriter,
    InvalidContentTypeError,
    InvalidJWTError,
    InvalidParameterValueError,
    LoamError,
    MissingRequiredParameterError,
    RegistrationError,
    UnauthorizedError,
    find_error,
)

type ContextFactory = Callable[..., Context]


@pytest.mark.unit
class TestErrorMessages:
    """Test the messages errors carry."""

    def test_missing_parameter(self) -> None:
        """Test that the missing parameter and its location are named."""
        error = MissingRequiredParameterError("limit", "query")

        assert str(error) == "missing required request parameter in query: limit"
        assert error.parameter == "limit"
        assert error.location == "query"

    def test_invalid_parameter(self) -> None:
        """Test that an invalid parameter value names the parameter."""
        assert str(InvalidParameterValueError("id", "path")) == "invalid parameter value in path: id"

    def test_invalid_jwt_includes_cause(self) -> None:
        """Test that a JWT error mentions why the token was refused."""
        error = InvalidJWTError("Authorization", "header", "token expired")

        assert "token expired" in str(error)
        assert error.cause == "token expired"

    def test_duplicate_operation(self) -> None:
        """Test that a duplicate operation is a registration error."""
        error = DuplicateOperationError("GET", "/pets")

        assert isinstance(error, RegistrationError)
        assert str(error) == "operation already registered: GET /pets"

    def test_repr_shows_message(self) -> None:
        """Test that the repr names the class and message."""
        assert repr(LoamError("boom")) == "LoamError('boom')"


@pytest.mark.unit
class TestFindError:
    """Test searching chains of wrapped errors."""

    def test_finds_outermost(self) -> None:
        """Test that the outer error itself matches."""
        error = BadRequestError("x")
        assert find_error(error, BadRequestError) is error

    def test_finds_through_cause_attribute(self) -> None:
        """Test that explicit causes are followed."""
        inner = MissingRequiredParameterError("q", "query")
        outer = BadRequestError(inner)

        assert find_error(outer, MissingRequiredParameterError) is inner

    def test_finds_through_dunder_cause(self) -> None:
        """Test that exception chaining is followed."""
        inner = InvalidContentTypeError("text/plain")
        try:
            try:
                raise inner
            except InvalidContentTypeError as exc:
                raise RuntimeError("wrapped") from exc
        except RuntimeError as outer:
            assert find_error(outer, InvalidContentTypeError) is inner

    def test_deeply_nested(self) -> None:
        """Test that several levels of wrapping are searched."""
        inner = ValueError("bad")
        chain = BadRequestError(FormFieldError("age", inner))

        assert find_error(chain, ValueError) is inner

    def test_missing_returns_none(self) -> None:
        """Test that None is returned when nothing matches."""
        assert find_error(BadRequestError("x"), UnauthorizedError) is None
        assert find_error(None, BadRequestError) is None

    def test_string_causes_end_the_chain(self) -> None:
        """Test that a plain string cause stops the search."""
        assert find_error(BadRequestError("just text"), ValueError) is None


@pytest.mark.unit
class TestErrorResponses:
    """Test errors that render themselves."""

    def test_bad_request_is_empty_400(self, make_context: ContextFactory) -> None:
        """Test that a bad request renders with no body."""
        response = BadRequestError("x").write_http_response(make_context())

        assert response.status_code == 400
        assert response.body == b""

    def test_unauthorized_is_empty_401(self, make_context: ContextFactory) -> None:
        """Test that an unauthorized error renders with no body."""
        response = UnauthorizedError("x").write_http_response(make_context())

        assert response.status_code == 401
        assert response.body == b""

    def test_response_writer_protocol(self) -> None:
        """Test that only self-rendering errors satisfy the protocol."""
        assert isinstance(BadRequestError("x"), HttpResponseWriter)
        assert not isinstance(RuntimeError("x"), HttpResponseWriter)
