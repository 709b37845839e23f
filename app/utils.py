"""
Shared helpers.
"""
import logging

from app.core import config


logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger configured with the application log level."""
    return logging.getLogger(name)
