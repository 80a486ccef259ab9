# storefront/logger.py
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from .config import settings


def setup_logger(level: Optional[str] = None, log_dir: Optional[str] = None, console: bool = True) -> logging.Logger:
    """
    Configure the ``storefront`` logger hierarchy.

    - Rich console output (tracebacks rendered by rich)
    - Daily rotating log file, 7 days kept
    - Safe to call more than once; handlers are attached only the first time

    Every module logs through ``logging.getLogger(__name__)`` so records from
    ``storefront.cart``, ``storefront.checkout`` etc. all end up here.
    """
    logger = logging.getLogger("storefront")
    logger.setLevel(level or settings.log_level)

    if logger.handlers:
        return logger

    directory = Path(log_dir or settings.log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    file_handler = TimedRotatingFileHandler(
        filename=directory / "storefront.log",
        when="midnight",
        interval=1,
        backupCount=7,
        encoding="utf-8"
    )
    file_handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(file_handler)

    if console:
        console_handler = RichHandler(rich_tracebacks=True, show_path=False)
        console_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(console_handler)

    logger.propagate = False
    logger.debug("Logger initialized (daily rotation enabled)")
    return logger
