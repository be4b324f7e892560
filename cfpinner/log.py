"""Logging helpers for cfpinner."""

from __future__ import annotations

import logging
from typing import Optional

from rich.logging import RichHandler

from cfpinner.config import LOG_LEVEL


def setup_logging(level: Optional[str] = None) -> None:
    """Route log records through the shared rich stderr console."""
    from cfpinner.display import err_console

    effective_level = (level or LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, effective_level, logging.WARNING),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(logging.WARNING, logging.getLogger().level))
