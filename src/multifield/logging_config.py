"""Console/file logging for the ``multifield`` logger namespace.

Library modules only call ``logging.getLogger(__name__)``; handlers are
attached here, on request, by scripts and examples.
"""
import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(
    level: int = logging.INFO, log_file: Optional[str] = None, fmt: str = LOG_FORMAT
) -> logging.Logger:
    """Route ``multifield`` records to stdout, and to ``log_file`` when given.

    Handlers from an earlier call are replaced, so calling this again only
    changes the destination and level.
    """
    logger = logging.getLogger("multifield")
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    targets: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        targets.append(logging.FileHandler(log_file, encoding="utf-8"))
    formatter = logging.Formatter(fmt, datefmt="%H:%M:%S")
    for handler in targets:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)

    logger.debug(f"logging to {len(targets)} handler(s) at level {logging.getLevelName(level)}")
    return logger
