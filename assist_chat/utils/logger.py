"""Logging setup for the service."""

import logging
import os

APP_LOGGER_NAME = "assist_chat"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def init_app_logger(settings, name: str = APP_LOGGER_NAME) -> logging.Logger:
    """
    Configure the package logger from settings.

    Module loggers come from ``logging.getLogger(__name__)`` under
    ``assist_chat`` and inherit these handlers. Handlers are attached once;
    later calls only adjust the level.
    """
    logger = logging.getLogger(name)
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    handlers = [logging.StreamHandler()]
    if settings.log_file:
        os.makedirs(os.path.dirname(settings.log_file) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file))

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
