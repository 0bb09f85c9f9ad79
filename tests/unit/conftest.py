"""Shared fixtures for unit tests."""

import os
from collections.abc import Generator
from typing import Any

import pytest
from pytest_mock import MockerFixture, MockType
from starlette.requests import Request

from loam.core.config import LogConfig, Settings
from loam.core.error_context import _get_sensitive_fields
from loam.rest.context import Context


@pytest.fixture
def mock_settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Provide a Settings object with test values.

    Returns:
        Settings: Settings built from test environment variables.
    """
    monkeypatch.setenv("APP_NAME", "TestApp")
    monkeypatch.setenv("APP_VERSION", "1.0.0")
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("API_HOST", "127.0.0.1")
    monkeypatch.setenv("API_PORT", "3000")
    return Settings()


@pytest.fixture
def mock_uvicorn(mocker: MockerFixture) -> MockType:
    """Mock uvicorn.run to prevent server startup.

    Returns:
        MockType: The mock for assertion purposes.
    """
    return mocker.patch("loam.server.uvicorn.run")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Generator[pytest.MonkeyPatch]:
    """Backup and restore environment variables to prevent test interference.

    Args:
        monkeypatch: Pytest monkeypatch fixture.

    Returns:
        pytest.MonkeyPatch: The monkeypatch instance for env manipulation.
    """
    original_env = os.environ.copy()

    env_prefixes = [
        "APP_",
        "API_",
        "ENVIRONMENT",
        "DEBUG",
        "PORT",
        "LOG_CONFIG__",
        "OBSERVABILITY_CONFIG__",
        "K_SERVICE",
        "AWS_EXECUTION_ENV",
    ]
    for key in list(os.environ.keys()):
        if any(key.startswith(prefix) for prefix in env_prefixes):
            monkeypatch.delenv(key, raising=False)

    yield monkeypatch

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def mock_get_settings(mocker: MockerFixture) -> MockType:
    """Mock get_settings with customized sensitive fields.

    Returns:
        MockType: Mock get_settings function.
    """
    mock_settings = mocker.Mock(spec=Settings)
    mock_log_config = mocker.Mock(spec=LogConfig)
    mock_log_config.sensitive_fields = ["tenant_id", "internal_note"]
    mock_settings.log_config = mock_log_config

    mock_get_settings_fn = mocker.patch("loam.core.error_context.get_settings")
    mock_get_settings_fn.return_value = mock_settings
    _get_sensitive_fields.cache_clear()
    return mock_get_settings_fn


def synthetic_request(
    method: str = "GET",
    path: str = "/",
    headers: list[tuple[str, str]] | None = None,
    query_string: str = "",
    path_params: dict[str, Any] | None = None,
    body: bytes = b"",
) -> Request:
    """Build a Starlette request without a server."""
    sent = False

    async def receive() -> dict[str, Any]:
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "raw_path": path.encode(),
        "query_string": query_string.encode(),
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers or []],
        "path_params": path_params or {},
    }
    return Request(scope, receive)


@pytest.fixture
def make_context() -> Any:  # noqa: ANN401
    """Factory building a Context around a synthetic request.

    Returns:
        Callable[..., Context]: Accepts the keyword arguments of ``synthetic_request``.
    """

    def factory(**kwargs: Any) -> Context:  # noqa: ANN401
        return Context(synthetic_request(**kwargs))

    return factory


@pytest.fixture
def build_request() -> Any:  # noqa: ANN401
    """Factory building a synthetic Starlette request.

    Returns:
        Callable[..., Request]: Accepts the keyword arguments of ``synthetic_request``.
    """
    return synthetic_request
