"""Central logging configuration.

Library modules only call ``logging.getLogger(__name__)``. Entry points (the
tool server) call ``configure_logging()`` once at startup.
"""

from __future__ import annotations

import logging
import sys
from typing import IO

import config

_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    name = (level or config.LOG_LEVEL).strip().upper()
    if name.isdigit():
        return int(name)
    numeric = getattr(logging, name, None)
    return numeric if isinstance(numeric, int) else logging.INFO


def configure_logging(level: int | str | None = None, *, stream: IO[str] = sys.stderr) -> None:
    """Attach a single stream handler to the root logger, once."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(_parse_level(level))
    root.addHandler(handler)

    _CONFIGURED = True
