"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
All modules access configuration through this module.
"""

import os
import yaml
from typing import Any, Dict


_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        _CONFIG_CACHE = yaml.safe_load(f)

    return _CONFIG_CACHE


def get_reporting_config() -> Dict[str, Any]:
    """Returns the reporting block (jurisdiction, target year, rounding)."""
    return load_config()["reporting"]


def get_recognition_config() -> Dict[str, Any]:
    """Returns the recognition block."""
    return load_config()["recognition"]


def get_input_config() -> Dict[str, Any]:
    """Returns the input block: required columns, metadata paths, table names."""
    return load_config()["input"]


def get_reconciliation_config() -> Dict[str, Any]:
    """Returns reconciliation monitoring thresholds."""
    return load_config()["reconciliation"]


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
