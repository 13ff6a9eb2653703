# util/logs.py
import logging
import logging.handlers
import os

from util import config

_configured = False

dt_fmt = "%Y-%m-%d %H:%M:%S"
formatter = logging.Formatter("[{asctime}] [{levelname:<8}] {name}: {message}", dt_fmt, style="{")


def setup_logging(level: str = None, path: str = None) -> logging.Logger:
    """Attach stderr and (optionally) rotating file handlers to the ``casino`` logger once."""
    global _configured
    logger = logging.getLogger("casino")
    if _configured:
        return logger
    logger.setLevel((level or config.LOG_LEVEL).upper())

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    log_path = path if path is not None else config.LOG_PATH
    if log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            filename=log_path,
            encoding="utf-8",
            maxBytes=16 * 1024 * 1024,
            backupCount=3,
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    _configured = True
    return logger
