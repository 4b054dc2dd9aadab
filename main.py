#!/usr/bin/env python3
"""Serve the matching core API with uvicorn.

Host, port, log level and auto-reload come from ``src.config``
(``API_HOST``, ``API_PORT``, ``LOG_LEVEL``, ``DEBUG``).
"""

import uvicorn

from src.config import settings
from src.utils.logging import get_logger

logger = get_logger(__name__)


def run() -> None:
    logger.info("Starting matching core API", host=settings.API_HOST, port=settings.API_PORT, env=settings.ENVIRONMENT)
    uvicorn.run(
        "src.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.DEBUG,
        proxy_headers=True,
    )


if __name__ == "__main__":
    run()
