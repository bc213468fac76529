"""
Configuration file loaders and path resolution.

This module handles:
- Path resolution (explicit, REALTIME_CLIENT_CONFIG, project-relative)
- YAML file loading
- Environment variable expansion, including ${VAR:-default}
"""

import os
import re
from pathlib import Path
from typing import Optional

import yaml


# Project root directory (parent of realtime_client/)
_PROJ_DIR = Path(__file__).parent.parent.parent.resolve()

DEFAULT_CONFIG_PATH = "config/realtime-client.yaml"

_DEFAULTED_VAR = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*):-([^}]*)\}")


def resolve_config_path(path: Optional[str] = None) -> str:
    """
    Resolve configuration file path to absolute path.

    Precedence: explicit ``path``, then REALTIME_CLIENT_CONFIG, then
    ``config/realtime-client.yaml``. Relative paths resolve against the
    project root.
    """
    path = path or os.getenv("REALTIME_CLIENT_CONFIG") or DEFAULT_CONFIG_PATH
    if not os.path.isabs(path):
        return str(_PROJ_DIR / path)
    return path


def expand_env(text: str) -> str:
    """
    Expand environment references in raw YAML text.

    ``${VAR:-default}`` falls back to ``default`` when VAR is unset or empty;
    plain ``${VAR}`` and ``$VAR`` are left untouched when VAR is unset.
    """
    def _replace(match: "re.Match[str]") -> str:
        return os.environ.get(match.group(1)) or match.group(2)

    return os.path.expandvars(_DEFAULTED_VAR.sub(_replace, text))


def load_yaml_with_env_expansion(path: str) -> dict:
    """
    Load YAML file with environment variable expansion.

    Args:
        path: Absolute path to YAML configuration file

    Returns:
        Parsed configuration dictionary (empty for an empty file)

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        yaml.YAMLError: If YAML parsing fails or the document is not a mapping
    """
    try:
        config_str = Path(path).read_text()
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found at: {path}") from None

    try:
        config_data = yaml.safe_load(expand_env(config_str))
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error parsing YAML configuration: {e}") from e

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise yaml.YAMLError(f"Configuration root must be a mapping, got {type(config_data).__name__}")
    return config_data
