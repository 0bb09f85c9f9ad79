"""Integration tests for the routes every Api serves and for routing fallbacks."""

from collections.abc import Callable

import pytest
from httpx import AsyncClient
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from loam.health import Binary
from loam.rest import (
    Api,
    Context,
    EmptyRequest,
    EmptyResponse,
    base_path,
    handle,
    handle_json,
    header,
    jwt_auth,
    liveness,
    method_not_allowed,
    middleware,
    not_found,
    path_param_value,
    query_param,
    readiness,
    regex,
    required,
    return_json,
    summary,
)
from loam.rest.middleware.request_context import CORRELATION_ID_HEADER

type ClientFactory = Callable[[Api], AsyncClient]


class Pet(BaseModel):
    name: str
    age: int | None = None


async def get_pet(ctx: Context, req: EmptyRequest) -> Pet:
    return Pet(name=path_param_value(ctx, "id"))


async def create_pet(ctx: Context, req: Pet) -> Pet:
    return req


async def delete_pet(ctx: Context, req: EmptyRequest) -> EmptyResponse:
    return EmptyResponse()


async def accept(ctx: Context, token: str) -> Context:
    return ctx


class Failing:
    async def healthy(self) -> bool:
        raise RuntimeError("database unreachable")


class StampMiddleware(BaseHTTPMiddleware):
    """Adds a fixed header to every response."""

    def __init__(self, app: Callable, value: str) -> None:
        super().__init__(app)
        self.value = value

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Stamp"] = self.value
        return response


def pet_api(*options: object) -> Api:
    return Api(
        "Pet Store",
        "1.0.0",
        handle(
            "GET",
            base_path("/pets").param("id", regex(r"^\d+$")),
            return_json(get_pet),
            summary("Find a pet"),
        ),
        handle(
            "DELETE",
            "/pets/{id}",
            delete_pet,
            header("Authorization", required(), jwt_auth("jwt", accept)),
        ),
        handle("POST", "/pets", handle_json(create_pet), query_param("dry_run")),
        *options,
    )


@pytest.mark.integration
class TestOpenApiDocument:
    """Test the served OpenAPI document."""

    @pytest.fixture
    async def document(self, client_factory: ClientFactory) -> dict:
        """The document served by the pet Api.

        Returns:
            dict: The parsed document.
        """
        response = await client_factory(pet_api()).get("/openapi.json")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        return response.json()

    async def test_info(self, document: dict) -> None:
        """Test the document version and info."""
        assert document["openapi"] == "3.0.3"
        assert document["info"] == {"title": "Pet Store", "version": "1.0.0"}

    async def test_operations_listed(self, document: dict) -> None:
        """Test that every operation is under its path and method."""
        assert set(document["paths"]) == {"/pets/{id}", "/pets"}
        assert set(document["paths"]["/pets/{id}"]) == {"get", "delete"}
        assert set(document["paths"]["/pets"]) == {"post"}
        assert document["paths"]["/pets/{id}"]["get"]["summary"] == "Find a pet"

    async def test_parameters(self, document: dict) -> None:
        """Test that declared parameters are described."""
        (path_id,) = document["paths"]["/pets/{id}"]["get"]["parameters"]
        assert path_id == {
            "name": "id",
            "in": "path",
            "required": True,
            "schema": {"type": "string", "pattern": r"^\d+$"},
        }
        (dry_run,) = document["paths"]["/pets"]["post"]["parameters"]
        assert dry_run == {"name": "dry_run", "in": "query", "schema": {"type": "string"}}

    async def test_request_body(self, document: dict) -> None:
        """Test that the JSON request body media type and schema are described."""
        body = document["paths"]["/pets"]["post"]["requestBody"]

        assert body["required"] is True
        schema = body["content"]["application/json"]["schema"]
        assert schema["properties"]["name"]["type"] == "string"
        assert schema["required"] == ["name"]
        assert schema["properties"]["age"]["nullable"] is True
        assert schema["properties"]["age"]["default"] is None

    async def test_security(self, document: dict) -> None:
        """Test that security schemes are registered and referenced."""
        assert document["paths"]["/pets/{id}"]["delete"]["security"] == [{"jwt": []}]
        assert "security" not in document["paths"]["/pets/{id}"]["get"]
        assert document["components"]["securitySchemes"] == {
            "jwt": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
        }

    async def test_empty_api(self, client_factory: ClientFactory) -> None:
        """Test that an Api without operations still serves a document."""
        response = await client_factory(Api("Empty", "0.1.0")).get("/openapi.json")

        assert response.json()["paths"] == {}
        assert "components" not in response.json()


@pytest.mark.integration
class TestHealthRoutes:
    """Test the readiness and liveness probes."""

    async def test_healthy_by_default(self, client_factory: ClientFactory) -> None:
        """Test that both probes pass without configured monitors."""
        client = client_factory(Api("Probe", "1.0.0"))

        assert (await client.get("/health/readiness")).status_code == 200
        assert (await client.get("/health/liveness")).status_code == 200

    async def test_liveness_monitor(self, client_factory: ClientFactory) -> None:
        """Test that liveness follows its own monitor."""
        client = client_factory(
            Api("Probe", "1.0.0", liveness(Binary(healthy=False)), readiness(Binary()))
        )

        assert (await client.get("/health/liveness")).status_code == 503
        assert (await client.get("/health/readiness")).status_code == 200

    async def test_failing_monitor(self, client_factory: ClientFactory) -> None:
        """Test that a monitor raising an error reports unavailable."""
        client = client_factory(Api("Probe", "1.0.0", readiness(Failing())))

        response = await client.get("/health/readiness")

        assert response.status_code == 503
        assert response.content == b""


@pytest.mark.integration
class TestRouting:
    """Test method dispatch and the routing fallbacks."""

    async def test_path_variable(self, client_factory: ClientFactory) -> None:
        """Test that path variables reach the handler."""
        response = await client_factory(pet_api()).get("/pets/7")

        assert response.status_code == 200
        assert response.json() == {"name": "7", "age": None}

    async def test_path_variable_pattern(self, client_factory: ClientFactory) -> None:
        """Test that path variable patterns are enforced."""
        response = await client_factory(pet_api()).get("/pets/rex")

        assert response.status_code == 400

    async def test_unknown_path(self, client_factory: ClientFactory) -> None:
        """Test that unknown paths are not found."""
        response = await client_factory(pet_api()).get("/owners")

        assert response.status_code == 404
        assert response.content == b""

    async def test_method_not_allowed(self, client_factory: ClientFactory) -> None:
        """Test that undeclared methods list the allowed ones."""
        response = await client_factory(pet_api()).put("/pets/7")

        assert response.status_code == 405
        allowed = {method.strip() for method in response.headers["allow"].split(",")}
        assert {"GET", "DELETE"} <= allowed

    async def test_head_served_by_get(self, client_factory: ClientFactory) -> None:
        """Test that HEAD requests use the GET operation."""
        response = await client_factory(pet_api()).head("/pets/7")

        assert response.status_code == 200

    async def test_custom_fallbacks(self, client_factory: ClientFactory) -> None:
        """Test that the 404 and 405 answers can be replaced."""

        async def gone(ctx: Context) -> Response:
            return Response(f"nothing at {ctx.request.url.path}", status_code=404)

        async def refuse(ctx: Context) -> Response:
            return Response("nope", status_code=405)

        client = client_factory(pet_api(not_found(gone), method_not_allowed(refuse)))

        missing = await client.get("/owners")
        assert missing.status_code == 404
        assert missing.text == "nothing at /owners"

        refused = await client.put("/pets/7")
        assert refused.status_code == 405
        assert refused.text == "nope"
        assert "GET" in refused.headers["allow"]


@pytest.mark.integration
class TestMiddleware:
    """Test request middleware."""

    async def test_correlation_id_generated(self, client_factory: ClientFactory) -> None:
        """Test that responses carry a generated correlation ID."""
        response = await client_factory(pet_api()).get("/pets/7")

        assert response.headers[CORRELATION_ID_HEADER]

    async def test_correlation_id_echoed(self, client_factory: ClientFactory) -> None:
        """Test that the client's correlation ID is sent back."""
        response = await client_factory(pet_api()).get(
            "/pets/7", headers={CORRELATION_ID_HEADER: "trace-me"}
        )

        assert response.headers[CORRELATION_ID_HEADER] == "trace-me"

    async def test_correlation_id_on_errors(self, client_factory: ClientFactory) -> None:
        """Test that fallback responses also carry the correlation ID."""
        response = await client_factory(pet_api()).get(
            "/owners", headers={CORRELATION_ID_HEADER: "trace-me"}
        )

        assert response.headers[CORRELATION_ID_HEADER] == "trace-me"

    async def test_custom_middleware(self, client_factory: ClientFactory) -> None:
        """Test that middleware given as an option wraps every route."""
        client = client_factory(pet_api(middleware(StampMiddleware, value="v1")))

        assert (await client.get("/pets/7")).headers["X-Stamp"] == "v1"
        assert (await client.get("/health/liveness")).headers["X-Stamp"] == "v1"
