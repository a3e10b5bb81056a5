# ==== JAPANESE PARSER APPLICATION ENTRY ==== #

"""
Application assembly for the Japanese parser.

The tool transport in front of this package calls :func:`lifespan` once at
process start and routes every tool call to ``service.dispatch``.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from japanese_parser.observability.logging import get_logger, init_logging
from japanese_parser.observability.tracing import init_tracing
from japanese_parser.services.japanese_parser import JapaneseParserService
from japanese_parser.settings import Settings, get_settings


logger = get_logger(__name__)


def create_service(settings: Optional[Settings] = None) -> JapaneseParserService:
    """
    Create a parser service with fresh resilience state.

    Args:
        settings: Application settings, defaults to the global instance

    Returns:
        JapaneseParserService: Service that has not been started yet
    """
    return JapaneseParserService(settings or get_settings())


@asynccontextmanager
async def lifespan(
    settings: Optional[Settings] = None
) -> AsyncGenerator[JapaneseParserService, None]:
    """
    Process lifespan: initialize observability, run the service, clean up.

    Args:
        settings: Application settings, defaults to the global instance

    Yields:
        JapaneseParserService: Started service
    """
    settings = settings or get_settings()

    # --► STARTUP SEQUENCE
    init_logging(settings.LOG_LEVEL, settings.LOG_DIR)
    if init_tracing(settings.SERVICE_NAME):
        logger.info("OpenTelemetry tracing enabled")

    service = create_service(settings)
    await service.start()
    try:
        yield service
    finally:
        # --► SHUTDOWN SEQUENCE
        await service.stop()
