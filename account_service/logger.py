# account_service/logger.py
import logging
import sys

LOGGER_NAME = "account_service"


def setup_logging(level="INFO"):
    """Console logging for the service and its modules."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper() if isinstance(level, str) else level)

    # Format: [TIME] | LEVEL | module | message
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s", datefmt="%H:%M:%S"
    )
    handler.setFormatter(formatter)

    # avoid duplicate output on uvicorn reload
    if not logger.handlers:
        logger.addHandler(handler)

    return logger
