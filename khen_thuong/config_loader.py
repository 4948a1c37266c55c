"""Loader for ``config.yaml`` (backend connection, logging, rule overrides)."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, List, Optional

import yaml

from .models import MedalTierRequirement
from .rule_tables import apply_rule_overrides, validate_requirement_table

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"

ENV_API_URL = "KHEN_THUONG_API_URL"
ENV_API_TOKEN = "KHEN_THUONG_API_TOKEN"


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Read the YAML config into a dict.

    Args:
        config_path: path of the config file; the repository's
            ``config.yaml`` when None.

    Returns:
        Config dictionary with ``api``, ``logging`` and ``rules`` sections
        always present. ``KHEN_THUONG_API_URL`` / ``KHEN_THUONG_API_TOKEN``
        override ``api.base_url`` / ``api.token``.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        cfg: dict[str, Any] = yaml.safe_load(f) or {}

    for section in ("api", "logging", "rules"):
        if not isinstance(cfg.get(section), dict):
            cfg[section] = {}

    if os.environ.get(ENV_API_URL):
        cfg["api"]["base_url"] = os.environ[ENV_API_URL]
    if os.environ.get(ENV_API_TOKEN):
        cfg["api"]["token"] = os.environ[ENV_API_TOKEN]

    log_file = cfg["logging"].get("file")
    if log_file and os.path.dirname(log_file):
        os.makedirs(os.path.dirname(log_file), exist_ok=True)

    logger.info("Config loaded: %s", path)
    return cfg


def requirements_from_config(cfg: Optional[dict[str, Any]]) -> List[MedalTierRequirement]:
    """Default requirement table with ``rules.requirements`` overrides applied."""
    overrides = ((cfg or {}).get("rules") or {}).get("requirements")
    table = apply_rule_overrides(overrides)
    for problem in validate_requirement_table(table):
        logger.warning("Rule table: %s", problem)
    return table
