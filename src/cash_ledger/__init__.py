"""Cash ledger package.

Importing the package sets up the ``cash_ledger`` logger. Every record at
INFO and above goes to a rotating file under ``.logs/`` at the project root.
The terminal only shows warnings and errors unless the CLI asks for more
through :func:`set_console_level`.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE = LOG_DIR / "cash_ledger.log"
CONSOLE_HANDLER_NAME = "cash_ledger.console"


def _open_log_file(formatter: logging.Formatter) -> Optional[logging.Handler]:
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: ledger log file '{LOG_FILE}' is unavailable ({exc}); logging to stderr only.", file=sys.stderr)
        return None
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    file_handler = _open_log_file(
        logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    if file_handler is not None:
        logger.addHandler(file_handler)

    # Command output goes to stdout; keep stderr quiet for normal runs.
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.set_name(CONSOLE_HANDLER_NAME)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)
    return logger


def set_console_level(level: int) -> int:
    """Change the stderr threshold of the package logger.

    Returns the previous level so callers can restore it.
    """

    for handler in log.handlers:
        if handler.get_name() == CONSOLE_HANDLER_NAME:
            previous = handler.level
            handler.setLevel(level)
            return previous
    raise LookupError("cash_ledger console handler is not installed")


log = _configure_logging()
