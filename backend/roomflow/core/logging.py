import logging
import os

from roomflow.core import config

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger("roomflow")


def attach_file_handler(filename: str = "backend.log") -> logging.Handler:
    """Mirror backend log lines into LOG_DIR. Call after ensure_dirs()."""
    path = os.path.abspath(os.path.join(config.LOG_DIR, filename))
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == path:
            return handler
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return handler


def detach_file_handlers() -> None:
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()
