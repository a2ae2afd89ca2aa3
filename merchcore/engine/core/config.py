"""
Application configuration utilities.

This module defines the ``Settings`` class used throughout the engine for
environment variables and provides helper functions to load YAML files
containing forecasting defaults, urgency thresholds and decision-table
cutoffs.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Dict

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Directory holding settings.yaml and thresholds.yaml
    config_dir: str = "configs"

    # Directory holding weekly history and SKU snapshot extracts
    data_dir: str = "data"


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return a cached instance of ``Settings``.

    Using a cache ensures that environment variables are only read once.
    """
    return Settings()


def load_yaml(file_path: str) -> dict:
    """Load a YAML file from the given path and return its contents.

    If the file does not exist, an empty dictionary is returned.
    """
    if not os.path.exists(file_path):
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_section(config_root: str, filename: str, section: str) -> Dict[str, Any]:
    """Return one top-level mapping from a YAML file under ``config_root``.

    Missing files, missing sections and non-mapping values all yield ``{}``.
    """
    data = load_yaml(os.path.join(config_root, filename))
    value = data.get(section) if isinstance(data, dict) else None
    return dict(value) if isinstance(value, dict) else {}
