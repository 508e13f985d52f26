"""
Logging Configuration

The package only creates module loggers under the "vectorseg" namespace:
cache rebuilds and chunk dispatch at DEBUG, singular covariance fallbacks
at WARNING. Applications that want to see them call setup_logging() once.
"""
import logging
import sys
from typing import Optional, Union

PACKAGE_LOGGER = "vectorseg"

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Set on handlers created here so a second call replaces only those
_OWNED = "_vectorseg_handler"


def _resolve_level(level: Union[int, str]) -> int:
    """Accept logging.DEBUG or 'debug'/'DEBUG'."""
    if isinstance(level, bool):
        raise ValueError(f"Invalid logging level: {level!r}")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown logging level name: {level!r}")
    return resolved


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
    fmt: str = DEFAULT_FORMAT
) -> logging.Logger:
    """
    Send vectorseg log records to stderr and, optionally, a file.

    Calling it again swaps the handlers from the previous call. Handlers
    attached by the application are left alone.

    Args:
        level: Level as an int or a name such as 'debug'
        log_file: Optional path; the file is truncated on setup
        fmt: logging.Formatter format string

    Returns:
        The 'vectorseg' logger

    Raises:
        ValueError: If level is not a known logging level
    """
    level = _resolve_level(level)
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    for handler in [h for h in logger.handlers if getattr(h, _OWNED, False)]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt, datefmt='%H:%M:%S')
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w', encoding='utf-8'))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _OWNED, True)
        logger.addHandler(handler)

    logger.debug("Logging set to %s", logging.getLevelName(level))
    return logger
