import logging
import os

FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Send application logs to stderr at LOG_LEVEL (default INFO)."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logger = logging.getLogger("tif_service")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(FORMAT))
        logger.addHandler(handler)
