"""
Locating and reading the streamer's YAML configuration.

Relative paths are taken from the project root so the service behaves the
same whether it is started from a checkout, a container or a console script.
"""

import os
from pathlib import Path
from typing import Any, Dict

import yaml


# Directory that holds pbx_streamer/ and config/
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def resolve_config_path(path: str) -> str:
    """Return `path` unchanged when absolute, otherwise anchored at PROJECT_ROOT."""
    if os.path.isabs(path):
        return path
    return str(PROJECT_ROOT / path)


def load_yaml_with_env_expansion(path: str) -> Dict[str, Any]:
    """
    Parse a YAML file after substituting ${VAR} / $VAR references.

    Unset variables are left as written, so a missing PBX_BASE_URL shows up
    as a literal "${PBX_BASE_URL}" and is reported by validation instead of
    silently becoming an empty string.

    Raises:
        FileNotFoundError: the file does not exist
        yaml.YAMLError: the expanded text is not valid YAML
    """
    try:
        raw = Path(path).read_text()
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found at: {path}")

    try:
        data = yaml.safe_load(os.path.expandvars(raw))
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error parsing YAML configuration: {e}")

    return data or {}
