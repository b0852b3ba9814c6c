import logging
import os


def configure_logging() -> None:
    """Configure structured logging defaults for the application."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("eshop_api").setLevel(level)
