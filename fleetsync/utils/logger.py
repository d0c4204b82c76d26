# fleetsync/utils/logger.py
"""
Logging for the sync agent: console + rotating file under logs/.

Socket.IO, Engine.IO and httpx log every packet/request at INFO, which buries
the agent's own event log, so they are held at LOG_LIBRARY_LEVEL.
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from fleetsync.config import settings

LOG_LEVEL = settings.LOG_LEVEL.upper()
LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "logs")
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

NOISY_LIBRARIES = ("socketio.client", "engineio.client", "httpx", "httpcore")

_configured = False


def _file_handler(fmt: logging.Formatter) -> RotatingFileHandler:
    os.makedirs(LOG_DIR, exist_ok=True)
    # 10 × 5MB
    handler = RotatingFileHandler(
        filename=os.path.join(LOG_DIR, settings.LOG_FILE),
        maxBytes=5 * 1024 * 1024,
        backupCount=10,
        encoding="utf-8",
    )
    handler.setLevel(LOG_LEVEL)
    handler.setFormatter(fmt)
    return handler


def _configure_root_logger():
    global _configured
    if _configured:
        return
    _configured = True

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler()
    console.setLevel(LOG_LEVEL)
    console.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(LOG_LEVEL)
    root.addHandler(console)
    root.addHandler(_file_handler(fmt))

    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(settings.LOG_LIBRARY_LEVEL.upper())


def get_logger(name: str) -> logging.Logger:
    """Named logger; the first call configures the root logger."""
    _configure_root_logger()
    return logging.getLogger(name)
