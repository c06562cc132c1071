"""Application entry point: ``uvicorn docvault.app:app``."""

import logging

from starlette.applications import Starlette

from docvault.config import settings
from docvault.services.routes import api_routes, exception_handlers

LOG_FORMAT = "%(asctime)s - %(name)s - [%(levelname)s] - %(message)s"


def setup_logging(level: int | None = None) -> None:
    """Configure the root logger once; later calls are no-ops."""
    root = logging.getLogger()
    if root.handlers:
        return
    if level is None:
        level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)


def create_app() -> Starlette:
    setup_logging()
    return Starlette(
        debug=settings.debug,
        routes=list(api_routes),
        exception_handlers=dict(exception_handlers),
    )


app = create_app()
