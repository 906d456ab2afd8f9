import logging
import os
import sys
from typing import Optional

_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s"


def get_logger(name: str = "trialbayes") -> logging.Logger:
    """Module logger; handlers are installed once on the package root."""
    return logging.getLogger(name)


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Attach a stdout handler to the package logger.

    Level defaults to the TRIALBAYES_LOG_LEVEL environment variable (INFO).
    Calling twice does not duplicate handlers.
    """
    logger = logging.getLogger("trialbayes")
    level_name = (level or os.getenv("TRIALBAYES_LOG_LEVEL", "INFO")).upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    return logger
