import os
import logging

LOG_LEVEL_ENV = "SONGPRINT_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s | %(filename)s:%(lineno)d  | %(levelname)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _resolve_level(level):
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "INFO")
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        # getLevelName returns "Level X" for unknown names
        return resolved if isinstance(resolved, int) else logging.INFO
    return level


def setup_logger(name=None, level=None):
    """
    Set up a songprint logger with file and line number information.

    Args:
        name: Logger name (use __name__ to get module name)
        level: Logging level (name or number). Defaults to the
            SONGPRINT_LOG_LEVEL environment variable, then INFO.

    Returns:
        logger: Configured logger instance
    """
    level = _resolve_level(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.NOTSET)
    console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(console_handler)

    return logger


def set_log_level(level, prefix="songprint"):
    """
    Change the level of every logger created under `prefix`.

    Args:
        level: Logging level (name or number)
        prefix: Logger name prefix

    Returns:
        Number of loggers updated
    """
    level = _resolve_level(level)
    updated = 0
    for name, logger in list(logging.Logger.manager.loggerDict.items()):
        if not isinstance(logger, logging.Logger):
            continue
        if name == prefix or name.startswith(prefix + "."):
            logger.setLevel(level)
            updated += 1
    return updated
