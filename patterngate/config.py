#!/usr/bin/env python3
# CUI // SP-CTI
"""Configuration loader for PatternGate.

Reads args/patterngate_config.yaml (or the file named by PATTERNGATE_CONFIG)
and deep-merges it over DEFAULT_CONFIG. A missing file is not an error; a
malformed one is.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Optional, Union

import yaml

from patterngate.resilience.errors import ConfigurationError

logger = logging.getLogger("patterngate.config")

BASE_DIR = Path(__file__).resolve().parent.parent
CONFIG_PATH = BASE_DIR / "args" / "patterngate_config.yaml"

DEFAULT_CONFIG = {
    "enforcement": {
        "session_ttl_seconds": 7200,
    },
    "catalog": {
        "directory": "catalog_docs",
    },
    "database": {
        "path": "data/patterngate.db",
    },
    "scope_lock": {
        "forbidden_files": [
            ".env", ".env.local", "package-lock.json", "pnpm-lock.yaml", "yarn.lock",
        ],
        "forbidden_patterns": ["node_modules/", ".git/", ".next/", "dist/"],
    },
    "logging": {
        "level": "INFO",
    },
}


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(path: Optional[Union[str, Path]] = None) -> dict:
    """Load configuration, falling back to DEFAULT_CONFIG for missing keys.

    Raises:
        ConfigurationError: if the file exists but is not a YAML mapping.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = Path(path or os.environ.get("PATTERNGATE_CONFIG") or CONFIG_PATH)
    if not config_path.exists():
        logger.debug("Config file %s not found, using defaults", config_path)
        return config

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Malformed config file {config_path}: {exc}", config_key=str(config_path)
        ) from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping", config_key=str(config_path)
        )

    ttl = loaded.get("enforcement", {}).get("session_ttl_seconds")
    if ttl is not None and (not isinstance(ttl, int) or ttl <= 0):
        raise ConfigurationError(
            "enforcement.session_ttl_seconds must be a positive integer",
            config_key="enforcement.session_ttl_seconds",
        )
    return _merge(config, loaded)


def configure_logging(config: Optional[dict] = None, stream=None) -> None:
    """Apply the configured log level with the standard PatternGate format."""
    level_name = (config or load_config())["logging"].get("level", "INFO")
    kwargs = {
        "level": getattr(logging, str(level_name).upper(), logging.INFO),
        "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    }
    if stream is not None:
        kwargs["stream"] = stream
    logging.basicConfig(**kwargs)
