"""
Z80 Disassembler — Logging Setup

One logger tree for the package ("z80_disassembler.*") plus the CLI.
Console output goes through rich on stderr so that listings and JSON on
stdout stay clean. An optional log file captures everything at DEBUG.
"""

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from .config import LOG_DATE_FORMAT, LOG_FORMAT


def setup_logging(
    name: str = "z80_disassembler",
    level: int = logging.DEBUG,
    console_level: int = logging.WARNING,
    log_file: Optional[Path] = None,
    rich_console: bool = True,
) -> logging.Logger:
    """
    Configure and return a logger.

    Repeated calls return the already configured logger unchanged.

    Args:
        name: logger name, usually the package name
        level: logger level (what reaches the handlers)
        console_level: minimum level shown on the console
        log_file: also write DEBUG+ records to this file
        rich_console: False keeps the console quiet (tests, piping)
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(level)

    # ── File handler: captures everything (DEBUG+) ──
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(log_file), encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logger.addHandler(fh)

    # ── Console handler: WARNING+ by default, -v lowers it ──
    if rich_console:
        ch = RichHandler(
            console=Console(stderr=True),
            level=console_level,
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
            tracebacks_show_locals=True,
        )
        logger.addHandler(ch)
    else:
        logger.addHandler(logging.NullHandler())

    if log_file is not None:
        logger.debug("Logger initialized: %s -> %s (console %s)",
                     name, log_file, logging.getLevelName(console_level))
    return logger
