"""
Process-wide logging setup.

Log lines carry the timestamp, level, module, function name, line number and
message, and go to stdout. Modules obtain their own logger with
``logging.getLogger(__name__)``; only the entry points call ``setup_logging``.
"""
from __future__ import annotations

import logging
import sys

LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(module)s | %(funcName)s() | "
    "line %(lineno)d | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # GitPython is chatty at DEBUG and can echo remote URLs.
    logging.getLogger("git").setLevel(logging.WARNING)
