"""
Logging configuration for feedcache.

Keep imaging library output quiet by default.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

_LIBRARY_LOGGERS = ("PIL", "pypdfium2")


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose library output.

    Args:
        quiet: If True, suppress warnings and library chatter.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        for name in _LIBRARY_LOGGERS:
            logging.getLogger(name).setLevel(logging.ERROR)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("feedcache").setLevel(logging.DEBUG)
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """Configure a persistent operations log for a cache store.

    Writes to {store_path}/feedcache-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    log_path = Path(store_path) / "feedcache-ops.log"
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    cache_logger = logging.getLogger("feedcache")
    cache_logger.addHandler(handler)
    # Let INFO through even in quiet mode
    if cache_logger.level == logging.NOTSET or cache_logger.level > logging.INFO:
        cache_logger.setLevel(logging.INFO)

    return handler
