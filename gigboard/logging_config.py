"""Logging configuration for the gigboard service."""

import logging
import sys


HANDLER_NAME = "gigboard-console"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Send every record at ``level`` or above to stdout."""

    log_level = getattr(logging, str(level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove handlers from an earlier call so records are not duplicated
    for handler in list(root_logger.handlers):
        if handler.get_name() == HANDLER_NAME:
            root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    console_handler.set_name(HANDLER_NAME)
    root_logger.addHandler(console_handler)

    logging.getLogger("werkzeug").setLevel(max(log_level, logging.WARNING))

    return root_logger
