"""Store checkout: purchase settlement with promotions and membership discounts.

Importing the package configures ``log``, the logger every module writes to.
Catalog look-ups go out at DEBUG, completed settlements at INFO, and rejected
purchases at WARNING or ERROR. Records land in ``.logs/store_checkout.log``;
only warnings reach stderr unless ``STORE_CHECKOUT_LOG_LEVEL`` says otherwise,
so the shopping prompts stay readable.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE = LOG_DIR / "store_checkout.log"
LOG_LEVEL_ENV = "STORE_CHECKOUT_LOG_LEVEL"
FILE_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
CONSOLE_FORMAT = "[%(levelname)s] %(message)s"


def _resolve_level(default: int) -> int:
    """Read the log level override from the environment, if any."""

    raw = os.environ.get(LOG_LEVEL_ENV)
    if not raw:
        return default
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else default


def _configure_logging() -> logging.Logger:
    """Attach the rotating file and console handlers to the package logger.

    The console handler defaults to ``WARNING`` and prints a short
    ``[LEVEL] message`` line, matching the ``[ERROR]`` messages the shopping
    console shows.
    """

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(_resolve_level(logging.INFO))

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)
    except OSError as exc:
        print(f"Warning: checkout log file unavailable at '{LOG_FILE}': {exc}", file=sys.stderr)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(_resolve_level(logging.WARNING))
    console_handler.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT))
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Checkout logger ready (file=%s)", LOG_FILE)
