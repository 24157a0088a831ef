"""Locate and layer the agent's TOML configuration files.

The agent reads up to three layers from one config directory, later layers
winning key by key:

    default.toml        shipped with the agent
    {environment}.toml  selected by TOOLBOX_AGENT_ENV
    local.toml          host-specific overrides, never committed

The directory is TOOLBOX_AGENT_CONFIG_DIR when set. Otherwise the agent
looks in /etc/toolbox-agent and then in the nearest ``config/`` directory
above the working directory that holds a default.toml. When none is found
the agent runs on model defaults and environment variables alone.
"""

import os
import re
import tomllib
from pathlib import Path
from typing import Any

CONFIG_DIR_ENV = "TOOLBOX_AGENT_CONFIG_DIR"
ENVIRONMENT_ENV = "TOOLBOX_AGENT_ENV"
SYSTEM_CONFIG_DIR = Path("/etc/toolbox-agent")
BASE_FILE = "default.toml"
LOCAL_FILE = "local.toml"

_ENVIRONMENT_NAME = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


def find_config_dir(start: Path | None = None) -> Path | None:
    """Return the directory holding the agent's TOML files, if any.

    Raises:
        FileNotFoundError: TOOLBOX_AGENT_CONFIG_DIR names a missing directory
    """
    explicit = os.environ.get(CONFIG_DIR_ENV)
    if explicit:
        path = Path(explicit)
        if not path.is_dir():
            raise FileNotFoundError(f"{CONFIG_DIR_ENV} is not a directory: {explicit}")
        return path

    if (SYSTEM_CONFIG_DIR / BASE_FILE).is_file():
        return SYSTEM_CONFIG_DIR

    here = (start or Path.cwd()).resolve()
    for directory in (here, *here.parents):
        candidate = directory / "config"
        if (candidate / BASE_FILE).is_file():
            return candidate
    return None


def environment_name() -> str:
    """Return the overlay name from TOOLBOX_AGENT_ENV (``development`` if unset).

    Raises:
        ValueError: the name is not a plain lowercase file stem
    """
    name = os.environ.get(ENVIRONMENT_ENV, "development").strip().lower()
    if not _ENVIRONMENT_NAME.match(name):
        raise ValueError(f"Invalid {ENVIRONMENT_ENV}: {name!r}")
    return name


def config_layers(config_dir: Path, environment: str) -> list[Path]:
    """Return the existing layer files in merge order.

    Raises:
        FileNotFoundError: the directory has no default.toml
    """
    base = config_dir / BASE_FILE
    if not base.is_file():
        raise FileNotFoundError(f"{BASE_FILE} not found in {config_dir}")

    layers = [base]
    for overlay in (f"{environment}.toml", LOCAL_FILE):
        path = config_dir / overlay
        if overlay != BASE_FILE and path.is_file():
            layers.append(path)
    return layers


def read_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as f:
        return tomllib.load(f)


def merge_tables(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge ``overlay`` into a copy of ``base``.

    Nested tables merge key by key; any other value in ``overlay``, lists
    included, replaces the one in ``base``. Neither argument is modified.
    """
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_tables(current, value)
        else:
            merged[key] = value
    return merged


def load_config(start: Path | None = None) -> dict[str, Any]:
    """Read and merge every configuration layer.

    Returns an empty dict when no config directory exists.
    """
    config_dir = find_config_dir(start)
    if config_dir is None:
        return {}

    merged: dict[str, Any] = {}
    for path in config_layers(config_dir, environment_name()):
        merged = merge_tables(merged, read_toml(path))
    return merged
