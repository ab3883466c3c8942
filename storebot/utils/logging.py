import logging
import sys
from storebot.config import get_settings

settings = get_settings()

# Top-level package name; module loggers use getLogger(__name__) beneath it
APP_LOGGER = __name__.split(".")[0]

def setup_logging():
    logger = logging.getLogger(APP_LOGGER)
    logger.setLevel(settings.LOG_LEVEL)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(settings.LOG_LEVEL)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(handler)

    # httpx logs request URLs at INFO, and Bot API URLs contain the token
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logger
