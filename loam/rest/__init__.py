"""The operation pipeline.

An Api is declared as operations, each a method, a path, a typed handler and
options::

    from loam.rest import Api, base_path, handle, handle_json, query_param, required

    api = Api(
        "Echo",
        "1.0.0",
        handle("POST", base_path("/echo"), handle_json(echo), query_param("lang", required())),
    )

Key components:
- **path**: Composable URL templates
- **parameter**: Parameter declarations, validators and security schemes
- **handler**: The typed handler contract and endpoints
- **json, form, html, proto, multipart**: Content adapters building endpoints
- **interceptor**: Steps run around every endpoint
- **operation / api**: Assembly of operations into a served, documented Api
- **errors, error_handler, problem_details**: Error taxonomy and responses
"""

from loam.rest.api import (
    Api,
    ApiOption,
    ApiOptions,
    liveness,
    method_not_allowed,
    middleware,
    not_found,
    readiness,
)
from loam.rest.context import Context
from loam.rest.error_handler import ErrorHandler, default_error_handler
from loam.rest.errors import (
    BadRequestError,
    DuplicateOperationError,
    DuplicatePathParameterError,
    FormFieldError,
    InvalidContentTypeError,
    InvalidJWTError,
    InvalidParameterValueError,
    LoamError,
    MissingRequiredParameterError,
    RegistrationError,
    SecuritySchemeConflictError,
    UnauthorizedError,
    UnsupportedSecuritySchemeError,
    find_error,
)
from loam.rest.form import consume_form, consume_only_form, decode_form, handle_form
from loam.rest.handler import (
    Consumer,
    EmptyRequest,
    EmptyResponse,
    Endpoint,
    Handler,
    Producer,
    TypedRequest,
    TypedResponse,
)
from loam.rest.html import produce_html, return_html
from loam.rest.interceptor import Interceptor, Next, chain, intercept
from loam.rest.json import consume_json, consume_only_json, handle_json, produce_json, return_json
from loam.rest.multipart import consume_multipart, consume_only_multipart
from loam.rest.operation import (
    description,
    handle,
    on_error,
    operation_id,
    summary,
    tags,
)
from loam.rest.parameter import (
    Cookie,
    ParameterLocation,
    api_key,
    basic_auth,
    cookie,
    cookie_value,
    header,
    header_value,
    jwt_auth,
    mutual_tls,
    oauth2,
    openid_connect,
    path_param,
    path_param_value,
    query_param,
    query_param_value,
    regex,
    required,
)
from loam.rest.path import Path, base_path
from loam.rest.problem_details import ProblemDetail, ProblemDetailsErrorHandler
from loam.rest.proto import (
    consume_only_proto,
    consume_proto,
    handle_proto,
    produce_proto,
    return_proto,
)

__all__ = [
    "Api",
    "ApiOption",
    "ApiOptions",
    "BadRequestError",
    "Consumer",
    "Context",
    "Cookie",
    "DuplicateOperationError",
    "DuplicatePathParameterError",
    "EmptyRequest",
    "EmptyResponse",
    "Endpoint",
    "ErrorHandler",
    "FormFieldError",
    "Handler",
    "Interceptor",
    "InvalidContentTypeError",
    "InvalidJWTError",
    "InvalidParameterValueError",
    "LoamError",
    "MissingRequiredParameterError",
    "Next",
    "ParameterLocation",
    "Path",
    "ProblemDetail",
    "ProblemDetailsErrorHandler",
    "Producer",
    "RegistrationError",
    "SecuritySchemeConflictError",
    "TypedRequest",
    "TypedResponse",
    "UnauthorizedError",
    "UnsupportedSecuritySchemeError",
    "api_key",
    "base_path",
    "basic_auth",
    "chain",
    "consume_form",
    "consume_json",
    "consume_multipart",
    "consume_only_form",
    "consume_only_json",
    "consume_only_multipart",
    "consume_only_proto",
    "consume_proto",
    "cookie",
    "cookie_value",
    "decode_form",
    "default_error_handler",
    "description",
    "find_error",
    "handle",
    "handle_form",
    "handle_json",
    "handle_proto",
    "header",
    "header_value",
    "intercept",
    "jwt_auth",
    "liveness",
    "method_not_allowed",
    "middleware",
    "mutual_tls",
    "not_found",
    "oauth2",
    "on_error",
    "openid_connect",
    "operation_id",
    "path_param",
    "path_param_value",
    "produce_html",
    "produce_json",
    "produce_proto",
    "query_param",
    "query_param_value",
    "readiness",
    "regex",
    "required",
    "return_html",
    "return_json",
    "return_proto",
    "summary",
    "tags",
]
