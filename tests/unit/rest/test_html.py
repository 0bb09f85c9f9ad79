"""Unit tests for loam/rest/html.py."""

from collections.abc import Callable
from dataclasses import dataclass

import jinja2
import pytest

from loam.rest.context import Context
from loam.rest.handler import EmptyRequest
from loam.rest.html import HTML_CONTENT_TYPE, compile_template, produce_html, return_html

type ContextFactory = Callable[..., Context]


@dataclass
class Pet:
    name: str


async def get_pet(ctx: Context, req: EmptyRequest) -> Pet:
    return Pet("<script>alert(1)</script>")


@pytest.mark.unit
class TestHtml:
    """Test rendering HTML responses."""

    async def test_values_are_escaped(self, make_context: ContextFactory) -> None:
        """Test that template output is autoescaped."""
        written = await return_html(get_pet, "<h1>{{ data.name }}</h1>").serve(make_context())

        assert written.status_code == 200
        assert written.body == b"<h1>&lt;script&gt;alert(1)&lt;/script&gt;</h1>"
        assert written.headers["content-type"].startswith(HTML_CONTENT_TYPE)

    async def test_producer(self, make_context: ContextFactory) -> None:
        """Test rendering a producer's value."""

        async def produce(ctx: Context) -> list[str]:
            return ["a", "b"]

        endpoint = produce_html(produce, "{% for x in data %}<li>{{ x }}</li>{% endfor %}")
        written = await endpoint.serve(make_context())

        assert written.body == b"<li>a</li><li>b</li>"

    def test_compiled_templates_pass_through(self) -> None:
        """Test that compiled templates are used as given."""
        template = jinja2.Template("{{ data }}")
        assert compile_template(template) is template

    def test_spec(self) -> None:
        """Test that HTML responses are documented as strings."""
        (spec,) = return_html(get_pet, "x").responses().values()
        data = spec.model_dump(exclude_none=True)

        assert data["content"][HTML_CONTENT_TYPE]["schema"] == {"type": "string"}
