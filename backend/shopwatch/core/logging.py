import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# chatty third-party loggers kept at WARNING
QUIET_LOGGERS = ("urllib3", "kombu", "amqp")


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Make sure the root logger has a handler and the wanted level.
    Uvicorn installs handlers before importing us; Celery workers and scripts usually don't.
    """
    resolved_level = (level or DEFAULT_LEVEL).upper()
    root_logger = logging.getLogger()

    if not root_logger.handlers:
        logging.basicConfig(
            level=resolved_level,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stdout)],
        )
    else:
        root_logger.setLevel(resolved_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.captureWarnings(True)
    return logging.getLogger("shopwatch")
