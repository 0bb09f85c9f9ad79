"""OpenAPI 3.0 document assembly and JSON Schema reflection.

The document is built from FastAPI's OpenAPI models while operations are
registered, and rendered to plain JSON-ready data once the Api is complete.
Schemas are reflected from Python types with pydantic and have every
``$ref`` inlined, so each media type entry is self-contained.
"""

from __future__ import annotations

from typing import Any, Final, Literal

from fastapi.openapi import models as oas
from pydantic import TypeAdapter

from loam.rest.errors import (
    DuplicateOperationError,
    RegistrationError,
    SecuritySchemeConflictError,
)

OPENAPI_VERSION: Final[str] = "3.0.3"

HTTP_METHODS: Final[frozenset[str]] = frozenset(
    {"get", "put", "post", "delete", "options", "head", "patch", "trace"}
)

_DEFS_PREFIX: Final[str] = "#/$defs/"

type JsonSchema = dict[str, Any]
type SecurityScheme = oas.APIKey | oas.HTTPBase | oas.HTTPBearer | oas.OAuth2 | oas.OpenIdConnect


class ApiDocument:
    """The OpenAPI document of one Api.

    It only grows while the Api is being declared; ``to_dict`` produces the
    snapshot that is served.
    """

    def __init__(self, title: str, version: str) -> None:
        self.title = title
        self.version = version
        self._paths: dict[str, oas.PathItem] = {}
        self._security_schemes: dict[str, SecurityScheme] = {}

    def add_operation(self, method: str, path: str, operation: oas.Operation) -> None:
        """Add an operation under ``path`` and ``method``.

        Raises:
            RegistrationError: If the method is not an HTTP method.
            DuplicateOperationError: If the method and path are taken.
        """
        attr = method.lower()
        if attr not in HTTP_METHODS:
            raise RegistrationError(f"unsupported HTTP method: {method}")

        item = self._paths.setdefault(path, oas.PathItem())
        if getattr(item, attr) is not None:
            raise DuplicateOperationError(method.upper(), path)
        setattr(item, attr, operation)

    def operation(self, method: str, path: str) -> oas.Operation | None:
        """Look up a registered operation."""
        item = self._paths.get(path)
        if item is None:
            return None
        return getattr(item, method.lower(), None)

    def add_security_scheme(self, name: str, scheme: SecurityScheme) -> None:
        """Register a named security scheme component.

        Registering an identical scheme again is a no-op.

        Raises:
            SecuritySchemeConflictError: If the name holds a different scheme.
        """
        existing = self._security_schemes.get(name)
        if existing is not None and existing != scheme:
            raise SecuritySchemeConflictError(name)
        self._security_schemes[name] = scheme

    def to_dict(self) -> dict[str, Any]:
        """Render the document as JSON-ready data.

        Only members that were given are rendered, so an explicit ``null``
        such as a schema's ``"default": null`` is kept. Security schemes are
        rendered with their defaults, which carry required members like
        ``type``.
        """
        data: dict[str, Any] = {
            "openapi": OPENAPI_VERSION,
            "info": oas.Info(title=self.title, version=self.version),
            "paths": dict(self._paths),
        }
        if self._security_schemes:
            schemes = {
                name: scheme.model_dump(mode="json", by_alias=True, exclude_none=True)
                for name, scheme in self._security_schemes.items()
            }
            data["components"] = {"securitySchemes": schemes}

        document = oas.OpenAPI.model_validate(data)
        return document.model_dump(mode="json", by_alias=True, exclude_unset=True)


def reflect_schema(
    tp: Any,  # noqa: ANN401
    mode: Literal["validation", "serialization"] = "validation",
) -> JsonSchema:
    """Reflect a Python type into an inlined JSON Schema.

    Args:
        tp: Any type pydantic can describe (models, dataclasses, builtins...).
        mode: Describe the type as accepted input or as produced output.

    Returns:
        JsonSchema: The schema without ``$defs`` or ``$ref``.
    """
    return inline_refs(TypeAdapter(tp).json_schema(mode=mode))


def inline_refs(schema: JsonSchema) -> JsonSchema:
    """Replace local ``$ref`` pointers with the definitions they name.

    Recursive definitions are cut at the first repetition with a bare object
    schema. ``anyOf`` unions with ``null`` become ``nullable`` schemas.
    """
    defs: dict[str, Any] = schema.get("$defs", {})

    def resolve(node: Any, stack: frozenset[str]) -> Any:  # noqa: ANN401
        if isinstance(node, list):
            return [resolve(item, stack) for item in node]
        if not isinstance(node, dict):
            return node

        ref = node.get("$ref")
        if isinstance(ref, str) and ref.startswith(_DEFS_PREFIX):
            name = ref.removeprefix(_DEFS_PREFIX)
            siblings = {k: resolve(v, stack) for k, v in node.items() if k != "$ref"}
            if name in stack or name not in defs:
                return {"type": "object", **siblings}
            return {**resolve(defs[name], stack | {name}), **siblings}

        resolved = {k: resolve(v, stack) for k, v in node.items() if k != "$defs"}
        return _nullable(resolved)

    return resolve(schema, frozenset())


def _nullable(node: JsonSchema) -> JsonSchema:
    variants = node.get("anyOf")
    if not isinstance(variants, list) or {"type": "null"} not in variants:
        return node
    others = [v for v in variants if v != {"type": "null"}]
    if len(others) != 1:
        return node
    merged = {k: v for k, v in node.items() if k != "anyOf"}
    return {**others[0], **merged, "nullable": True}


def request_body(content_type: str, schema: JsonSchema) -> oas.RequestBody:
    """Describe a required request body of one media type."""
    return oas.RequestBody.model_validate(
        {"required": True, "content": {content_type: {"schema": schema}}}
    )


def response(
    description: str = "OK",
    content_type: str | None = None,
    schema: JsonSchema | None = None,
) -> oas.Response:
    """Describe a response, optionally with a body of one media type."""
    data: dict[str, Any] = {"description": description}
    if content_type is not None:
        data["content"] = {content_type: {"schema": schema or {}}}
    return oas.Response.model_validate(data)
