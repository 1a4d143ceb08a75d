# marksheet_digitizer/log.py
from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_logger = logging.getLogger("marksheet_digitizer")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single RichHandler to the package logger (idempotent)."""
    if not any(isinstance(h, RichHandler) for h in _logger.handlers):
        handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True, markup=False)
        handler.setFormatter(logging.Formatter("%(name)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
        _logger.addHandler(handler)
    _logger.setLevel(level.upper())
    return _logger


def get_logger(name: str | None = None) -> logging.Logger:
    if name:
        return _logger.getChild(name)
    return _logger
