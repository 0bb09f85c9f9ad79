"""Run an Api with uvicorn."""

import os
from typing import Any, Final

import uvicorn
from loguru import logger

from loam.core.config import Settings, get_settings
from loam.core.logging import setup_logging
from loam.core.observability import instrument_api, setup_tracing
from loam.rest.api import Api

UVICORN_LOGGERS: Final[tuple[str, ...]] = ("uvicorn", "uvicorn.error", "uvicorn.access")


def uvicorn_log_config() -> dict[str, Any]:
    """Logging config routing uvicorn's loggers into Loguru."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "handlers": {
            "default": {
                "class": "loam.core.logging.InterceptHandler",
            },
        },
        "loggers": {
            name: {"handlers": ["default"], "level": "INFO", "propagate": False}
            for name in UVICORN_LOGGERS
        },
    }


def resolve_port(settings: Settings) -> int:
    """The port to listen on; ``PORT`` overrides the configured one.

    Platforms such as Cloud Run tell the container its port through ``PORT``.
    """
    return int(os.environ.get("PORT", settings.api_port))


def run(api: Api, settings: Settings | None = None) -> None:
    """Serve ``api`` until the process is stopped.

    Args:
        api: The Api to serve.
        settings: Optional settings instance. If not provided, will use get_settings().
    """
    if settings is None:
        settings = get_settings()

    setup_logging(settings)
    setup_tracing(settings)
    instrument_api(api, settings)

    port = resolve_port(settings)
    logger.info(
        "Starting Uvicorn on http://{}:{}",
        settings.api_host,
        port,
        title=api.document.title,
        version=api.document.version,
    )
    uvicorn.run(
        api,
        host=settings.api_host,
        port=port,
        log_config=uvicorn_log_config(),
    )
