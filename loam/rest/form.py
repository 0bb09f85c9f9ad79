"""URL-encoded form request bodies.

Form bodies decode into dataclasses or pydantic models, one field per form
key. The key of a field is, in order of precedence:

- ``field(metadata={"form": "key"})`` on a dataclass field,
- the alias of a pydantic field,
- the lower-cased field name.

Supported field types are ``str``, ``int``, ``float``, ``bool``,
``datetime`` (RFC 3339), ``timedelta`` (durations such as ``1h30m`` or
``250ms``), ``Enum`` subclasses (by value), ``list[T]`` and ``T | None`` of
those, and any type with a ``from_text(data: bytes)`` classmethod. Integers
can be bounded to a machine width with ``Int8`` ... ``UInt64``.
"""

import dataclasses
import re
import types
import typing
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Final, Generic, TypeVar, Union

from annotated_types import Interval
from fastapi.openapi import models as oas
from pydantic import BaseModel, ValidationError
from pydantic.errors import PydanticUserError

from loam.rest.context import Context
from loam.rest.errors import (
    BadRequestError,
    FormFieldError,
    InvalidContentTypeError,
    RegistrationError,
)
from loam.rest.handler import (
    UNSET,
    Consumer,
    ConsumerFunc,
    ConsumerHandler,
    Endpoint,
    EndpointLike,
)
from loam.rest.json import return_json
from loam.rest.openapi import JsonSchema, reflect_schema, request_body

FORM_CONTENT_TYPE: Final[str] = "application/x-www-form-urlencoded"
FORM_KEY: Final[str] = "form"

T = TypeVar("T")

Int8 = Annotated[int, Interval(ge=-(2**7), le=2**7 - 1)]
Int16 = Annotated[int, Interval(ge=-(2**15), le=2**15 - 1)]
Int32 = Annotated[int, Interval(ge=-(2**31), le=2**31 - 1)]
Int64 = Annotated[int, Interval(ge=-(2**63), le=2**63 - 1)]
UInt8 = Annotated[int, Interval(ge=0, le=2**8 - 1)]
UInt16 = Annotated[int, Interval(ge=0, le=2**16 - 1)]
UInt32 = Annotated[int, Interval(ge=0, le=2**32 - 1)]
UInt64 = Annotated[int, Interval(ge=0, le=2**64 - 1)]

_TRUE: Final[frozenset[str]] = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE: Final[frozenset[str]] = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_INTEGER = re.compile(r"^[+-]?[0-9]+$")
_RFC3339 = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)
_DURATION_PART = re.compile(r"([0-9]+(?:\.[0-9]*)?|\.[0-9]+)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_UNITS: Final[dict[str, float]] = {
    "ns": 1e-3,
    "us": 1.0,
    "µs": 1.0,
    "μs": 1.0,
    "ms": 1e3,
    "s": 1e6,
    "m": 60e6,
    "h": 3600e6,
}


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``300ms``, ``-1.5h`` or ``2h45m``.

    Units are ``ns``, ``us`` (or ``µs``), ``ms``, ``s``, ``m`` and ``h``.
    Precision below a microsecond is lost.

    Raises:
        ValueError: If ``text`` is not a duration.
    """
    rest = text
    sign = 1
    if rest[:1] in ("+", "-"):
        sign = -1 if rest[0] == "-" else 1
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f"invalid duration {text!r}")

    microseconds = 0.0
    pos = 0
    while pos < len(rest):
        match = _DURATION_PART.match(rest, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        number, unit = match.groups()
        microseconds += float(number) * _DURATION_UNITS[unit]
        pos = match.end()
    return timedelta(microseconds=sign * microseconds)


def parse_bool(text: str) -> bool:
    """Parse ``1 t T TRUE true True`` or ``0 f F FALSE false False``."""
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"invalid boolean {text!r}")


def _parse_int(text: str, bounds: Interval | None) -> int:
    if not _INTEGER.match(text):
        raise ValueError(f"invalid integer {text!r}")
    value = int(text)
    if bounds is not None:
        if bounds.ge is not None and value < bounds.ge:
            raise ValueError(f"value {value} out of range")
        if bounds.le is not None and value > bounds.le:
            raise ValueError(f"value {value} out of range")
    return value


def _parse_datetime(text: str) -> datetime:
    if not _RFC3339.match(text):
        raise ValueError(f"invalid RFC 3339 timestamp {text!r}")
    return datetime.fromisoformat(text.upper())


def _parse_enum(tp: type[Enum], text: str) -> Enum:
    for member in tp:
        if str(member.value) == text:
            return member
    raise ValueError(f"{text!r} is not a valid {tp.__name__}")


def _unwrap(tp: Any) -> tuple[Any, Interval | None]:  # noqa: ANN401
    """Strip ``Annotated`` and ``Optional`` from a field type."""
    bounds = None
    if typing.get_origin(tp) is Annotated:
        tp, *metadata = typing.get_args(tp)
        ge = next((m.ge for m in metadata if getattr(m, "ge", None) is not None), None)
        le = next((m.le for m in metadata if getattr(m, "le", None) is not None), None)
        if ge is not None or le is not None:
            bounds = Interval(ge=ge, le=le)
    if typing.get_origin(tp) in (Union, types.UnionType):
        args = [arg for arg in typing.get_args(tp) if arg is not type(None)]
        if len(args) == 1:
            return _unwrap(args[0])
    return tp, bounds


def parse_value(tp: Any, text: str) -> Any:  # noqa: ANN401
    """Parse one form value into ``tp``.

    Types with a ``from_text(bytes)`` constructor parse themselves; any
    error it raises is reported as a ``ValueError``.

    Raises:
        ValueError: If ``text`` is not a valid value.
        TypeError: If ``tp`` is not supported.
    """
    tp, bounds = _unwrap(tp)
    if callable(from_text := getattr(tp, "from_text", None)):
        try:
            return from_text(text.encode())
        except ValueError:
            raise
        except Exception as exc:
            raise ValueError(f"invalid {getattr(tp, '__name__', tp)}: {exc}") from exc
    if tp is str:
        return text
    if tp is bool:
        return parse_bool(text)
    if tp is int:
        return _parse_int(text, bounds)
    if tp is float:
        return float(text)
    if tp is datetime:
        return _parse_datetime(text)
    if tp is timedelta:
        return parse_duration(text)
    if isinstance(tp, type) and issubclass(tp, Enum):
        return _parse_enum(tp, text)
    raise TypeError(f"unsupported field type: {getattr(tp, '__name__', tp)}")


@dataclasses.dataclass(frozen=True)
class FormField:
    """One field of a form target type."""

    name: str
    key: str
    type: Any
    required: bool
    init_key: str

    def is_list(self) -> bool:
        return typing.get_origin(_unwrap(self.type)[0]) is list

    def decode(self, values: Sequence[str]) -> Any:  # noqa: ANN401
        try:
            if self.is_list():
                (item_type,) = typing.get_args(_unwrap(self.type)[0]) or (str,)
                return [parse_value(item_type, value) for value in values]
            return parse_value(self.type, values[0])
        except (ValueError, TypeError) as exc:
            raise FormFieldError(self.name, exc) from exc


def form_fields(tp: type) -> list[FormField]:
    """List the form fields of a dataclass or pydantic model.

    Raises:
        RegistrationError: If ``tp`` is neither.
    """
    if isinstance(tp, type) and issubclass(tp, BaseModel):
        return [
            FormField(
                name,
                info.alias or name.lower(),
                Annotated[info.annotation, *info.metadata] if info.metadata else info.annotation,
                info.is_required(),
                info.alias or name,
            )
            for name, info in tp.model_fields.items()
            if not name.startswith("_")
        ]

    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        hints = typing.get_type_hints(tp, include_extras=True)
        return [
            FormField(
                f.name,
                f.metadata.get(FORM_KEY) or f.name.lower(),
                hints.get(f.name, f.type),
                f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING,
                f.name,
            )
            for f in dataclasses.fields(tp)
            if f.init and not f.name.startswith("_")
        ]

    raise RegistrationError(
        f"form requests decode into dataclasses or pydantic models, not {tp!r}"
    )


def _getlist(form: Any, key: str) -> list[str]:  # noqa: ANN401
    if hasattr(form, "getlist"):
        return [str(value) for value in form.getlist(key)]
    return list(form.get(key, ()))


def decode_form(form: Mapping[str, Sequence[str]] | Any, tp: type[T]) -> T:  # noqa: ANN401
    """Decode submitted form values into an instance of ``tp``.

    Args:
        form: Starlette ``FormData`` or a mapping of keys to value lists.
        tp: A dataclass or pydantic model.

    Returns:
        T: The decoded instance.

    Raises:
        FormFieldError: If a value is invalid, a required key is absent or
            a field type is not supported.
        ValidationError: If a pydantic model rejects the decoded values.
    """
    data: dict[str, Any] = {}
    for form_field in form_fields(tp):
        values = _getlist(form, form_field.key)
        if not values:
            if form_field.required:
                raise FormFieldError(form_field.name, f"missing form key {form_field.key!r}")
            continue
        data[form_field.init_key] = form_field.decode(values)

    if isinstance(tp, type) and issubclass(tp, BaseModel):
        return tp.model_validate(data)  # type: ignore[attr-defined]
    return tp(**data)


def form_schema(tp: type) -> JsonSchema:
    """Describe a form target type by its form keys."""
    properties: dict[str, JsonSchema] = {}
    required: list[str] = []
    for form_field in form_fields(tp):
        try:
            properties[form_field.key] = reflect_schema(form_field.type)
        except PydanticUserError:
            properties[form_field.key] = {"type": "string"}
        if form_field.required:
            required.append(form_field.key)

    schema: JsonSchema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def media_type(content_type: str) -> str:
    """The media type of a Content-Type header, without parameters."""
    return content_type.partition(";")[0].strip().lower()


class FormRequestReader(Generic[T]):
    """Reads ``application/x-www-form-urlencoded`` bodies into ``request_type``.

    Parameters of the content type, such as a charset, are ignored.
    """

    def __init__(self, request_type: type[T]) -> None:
        form_fields(request_type)
        self.request_type = request_type

    def spec(self) -> oas.RequestBody:
        return request_body(FORM_CONTENT_TYPE, form_schema(self.request_type))

    async def read_request(self, ctx: Context) -> T:
        content_type = ctx.request.headers.get("content-type", "")
        if media_type(content_type) != FORM_CONTENT_TYPE:
            raise BadRequestError(InvalidContentTypeError(content_type))

        form = await ctx.request.form()
        try:
            return decode_form(form, self.request_type)
        except (FormFieldError, ValidationError) as exc:
            raise BadRequestError(exc) from exc


def consume_form(handler: EndpointLike, *, request_type: Any = UNSET) -> Endpoint[Any, Any]:  # noqa: ANN401
    """Read the handler's request value from a form body.

    Raises:
        RegistrationError: If the request type is not a dataclass or a
            pydantic model.
    """
    endpoint = Endpoint.of(handler)
    if request_type is UNSET:
        request_type = endpoint.request_type
    return endpoint.with_reader(FormRequestReader(request_type))


def handle_form(
    handler: EndpointLike,
    *,
    request_type: Any = UNSET,  # noqa: ANN401
    response_type: Any = UNSET,  # noqa: ANN401
) -> Endpoint[Any, Any]:
    """Read a form body and answer with JSON."""
    return consume_form(
        return_json(handler, response_type=response_type), request_type=request_type
    )


def consume_only_form(
    consumer: Consumer[Any] | ConsumerFunc[Any],
    *,
    request_type: Any = UNSET,  # noqa: ANN401
) -> Endpoint[Any, Any]:
    """Feed a form body to a consumer and answer with an empty 200."""
    return consume_form(ConsumerHandler(consumer), request_type=request_type)
