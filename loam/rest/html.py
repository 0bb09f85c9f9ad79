"""HTML responses rendered from jinja2 templates.

The handler's response value is passed to the template as ``data``::

    return_html(get_pet, "<h1>{{ data.name }}</h1>")

Templates given as strings are compiled with autoescaping enabled.
"""

from typing import Any, Final

import jinja2
from fastapi.openapi import models as oas
from starlette import status
from starlette.responses import HTMLResponse, Response

from loam.rest.context import Context
from loam.rest.handler import Endpoint, EndpointLike, Producer, ProducerFunc, ProducerHandler
from loam.rest.openapi import response

HTML_CONTENT_TYPE: Final[str] = "text/html"

_environment = jinja2.Environment(autoescape=True)  # noqa: S701 - autoescape is on


def compile_template(template: str | jinja2.Template) -> jinja2.Template:
    """Return ``template``, compiling it first when it is a string."""
    if isinstance(template, jinja2.Template):
        return template
    return _environment.from_string(template)


class HtmlResponseWriter:
    """Writes response values through a template as ``text/html``."""

    def __init__(self, template: str | jinja2.Template) -> None:
        self.template = compile_template(template)

    def spec(self) -> tuple[int, oas.Response]:
        return status.HTTP_200_OK, response("OK", HTML_CONTENT_TYPE, {"type": "string"})

    async def write_response(self, ctx: Context, value: Any) -> Response:  # noqa: ANN401
        return HTMLResponse(self.template.render(data=value), status_code=status.HTTP_200_OK)


def return_html(handler: EndpointLike, template: str | jinja2.Template) -> Endpoint[Any, Any]:
    """Render the handler's response value with ``template``."""
    return Endpoint.of(handler).with_writer(HtmlResponseWriter(template))


def produce_html(
    producer: Producer[Any] | ProducerFunc[Any], template: str | jinja2.Template
) -> Endpoint[Any, Any]:
    """Render a producer's value with ``template``; the request body is ignored."""
    return return_html(ProducerHandler(producer), template)
