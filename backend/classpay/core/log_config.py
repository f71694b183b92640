"""Process-wide logging setup shared by the worker and any embedding app."""

import logging

from .config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=level or settings.log_level, format=LOG_FORMAT)
    # Stripe's own logger is chatty at INFO (one line per request)
    logging.getLogger("stripe").setLevel(logging.WARNING)
