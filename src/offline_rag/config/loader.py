"""
Locate and read ``config.toml``.

The file is resolved from an explicit path, else ``$OFFLINERAG_CONFIG``,
else ``config.toml`` in the working directory. Only the ``[offlinerag]``
table is read by this package; its known sub-tables must be tables.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "OFFLINERAG_CONFIG"
DEFAULT_CONFIG_PATH = Path("config.toml")
ROOT_TABLE = "offlinerag"
SECTION_TABLES = ("retrieval", "folders", "local_llm")


class ConfigError(ValueError):
    """Raised when config.toml is unreadable or mis-shaped."""


def config_path(path: str | Path | None = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def validate(raw: Dict[str, Any], source: Path) -> Dict[str, Any]:
    section = raw.get(ROOT_TABLE, {})
    if not isinstance(section, dict):
        raise ConfigError(f"{source}: [{ROOT_TABLE}] must be a table")
    for name in SECTION_TABLES:
        if not isinstance(section.get(name, {}), dict):
            raise ConfigError(f"{source}: [{ROOT_TABLE}.{name}] must be a table")
    unknown = sorted(k for k, v in section.items() if isinstance(v, dict) and k not in SECTION_TABLES)
    if unknown:
        logger.warning("Ignoring unknown config tables in %s: %s", source, ", ".join(unknown))
    return raw


def load_raw_config(path: str | Path | None = None) -> Dict[str, Any]:
    """
    Load and validate the config file.

    Returns an empty dict when the file is missing so callers fall back to
    environment variables. A path given through ``$OFFLINERAG_CONFIG`` that
    does not exist is an error.

    :raises ConfigError: On invalid TOML or a mis-shaped ``[offlinerag]`` table.
    """
    target = config_path(path)
    if not target.is_file():
        if path is None and os.getenv(CONFIG_ENV_VAR):
            raise ConfigError(f"{CONFIG_ENV_VAR} points to a missing file: {target}")
        return {}

    try:
        with target.open("rb") as handle:
            raw = tomllib.load(handle)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{target}: {e}") from e
    return validate(raw, target)


__all__ = ["load_raw_config", "config_path", "validate", "ConfigError", "CONFIG_ENV_VAR"]
