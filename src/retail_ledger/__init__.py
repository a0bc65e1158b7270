"""Retail transaction reconciliation engine backed by an Excel workbook.

Importing the package configures the shared ``log`` used by every module: a
rotating file under ``.logs/`` next to the project plus warnings on stderr.
``RETAIL_LEDGER_LOG_DIR`` moves the log directory and
``RETAIL_LEDGER_LOG_LEVEL`` changes the file handler level.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("RETAIL_LEDGER_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "retail_ledger.log"
LOG_LEVEL = os.environ.get("RETAIL_LEDGER_LOG_LEVEL", "INFO").upper()


def _configure_logging() -> logging.Logger:
    """Attach the ledger's file and console handlers once per process."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = logging.getLevelName(LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(min(level, logging.WARNING))
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        ledger_file = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        ledger_file.setLevel(level)
        ledger_file.setFormatter(formatter)
        logger.addHandler(ledger_file)
    except OSError as exc:
        print(
            f"Warning: ledger log disabled, cannot write '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )

    # Terminal gets warnings and errors only.
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(formatter)
    logger.addHandler(stderr_handler)

    return logger


log = _configure_logging()
log.debug("Ledger logging ready (level %s, file %s)", LOG_LEVEL, LOG_FILE)
