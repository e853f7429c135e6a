import logging
import sys
from grove.config import get_settings

settings = get_settings()

def setup_logging():
    # Module loggers are created with logging.getLogger(__name__), so they all
    # live under the "grove" namespace and inherit this handler.
    logger = logging.getLogger("grove")
    logger.setLevel(settings.LOG_LEVEL)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(settings.LOG_LEVEL)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(handler)

    return logger
