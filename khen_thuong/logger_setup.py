"""Logging initialisation."""

from __future__ import annotations

import logging
import sys
from typing import Any

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(cfg: dict[str, Any], level_override: str | None = None) -> int:
    """Configure the root logger from the ``logging`` config section.

    ``level_override`` (e.g. ``"DEBUG"`` from ``--verbose``) wins over the
    configured level. Returns the effective level.
    """
    log_cfg = cfg.get("logging", {}) or {}
    level_name = str(level_override or log_cfg.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_cfg.get("file"):
        handlers.append(logging.FileHandler(log_cfg["file"], encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )
    # Rule rejections are logged at DEBUG; aiohttp internals stay at INFO.
    logging.getLogger("aiohttp").setLevel(max(level, logging.INFO))
    return level
