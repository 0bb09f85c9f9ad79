"""Shared fixtures for integration tests.

Integration tests serve a real ``Api`` in process through httpx's ASGI
transport, so requests go through routing, middleware, interceptor chains
and error handlers exactly as they would behind uvicorn.
"""

from collections.abc import AsyncGenerator, Callable

import pytest
from httpx import ASGITransport, AsyncClient

from loam.rest.api import Api

type ClientFactoryType = Callable[[Api], AsyncClient]


@pytest.fixture
async def client_factory() -> AsyncGenerator[ClientFactoryType]:
    """Factory fixture for creating test clients for an Api.

    Usage:
        async def test_something(client_factory):
            client = client_factory(Api("Test", "1.0.0", handle(...)))
            response = await client.get("/...")

    Yields:
        ClientFactoryType: Builds a client bound to the given Api.
    """
    clients: list[AsyncClient] = []

    def _create_client(api: Api) -> AsyncClient:
        transport = ASGITransport(app=api)
        client = AsyncClient(transport=transport, base_url="http://test")
        clients.append(client)
        return client

    yield _create_client

    for client in clients:
        await client.aclose()
