"""Rich-based logging configuration.

Colored console output when attached to a terminal, plain text otherwise
(containers, CI, log shippers). ``TASKSWARM_RICH_LOGS`` forces either mode.
"""

from __future__ import annotations

import logging
import os
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

SWARM_THEME = Theme(
    {
        "logging.level.debug": "blue",
        "logging.level.info": "green",
        "logging.level.warning": "yellow",
        "logging.level.error": "red bold",
        "logging.level.critical": "red bold reverse",
    }
)

PLAIN_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def should_use_rich() -> bool:
    """Rich output if forced on, or auto-detected from a TTY on stderr."""
    env_value = os.environ.get("TASKSWARM_RICH_LOGS", "").lower()
    if env_value in ("1", "true", "yes"):
        return True
    if env_value in ("0", "false", "no"):
        return False
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


def configure_logging(level: int | str = logging.INFO, force_rich: bool | None = None) -> None:
    """Install a single root handler.

    Args:
        level: Logging level name or number.
        force_rich: Override auto-detection. None = auto-detect.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    use_rich = force_rich if force_rich is not None else should_use_rich()

    root = logging.getLogger()
    root.handlers.clear()

    handler: logging.Handler
    if use_rich:
        handler = RichHandler(
            console=Console(theme=SWARM_THEME, stderr=True),
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
            log_time_format="[%Y-%m-%d %H:%M:%S]",
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
