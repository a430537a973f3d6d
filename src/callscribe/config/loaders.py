"""
Configuration file loading.

Paths are resolved against the project root; YAML text goes through
environment expansion before parsing. Supported references:

- ``${VAR}`` and ``$VAR``: replaced when VAR is set, left verbatim otherwise
- ``${VAR:-fallback}``: VAR when set and non-empty, else ``fallback``
"""

import os
import re
from pathlib import Path

import yaml

# Project root directory (parent of src/)
_PROJ_DIR = Path(__file__).parent.parent.parent.parent.resolve()

_ENV_REF = re.compile(r"\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)")


def resolve_config_path(path: str) -> str:
    """Absolute path for ``path``; relative paths are taken from the project root."""
    if os.path.isabs(path):
        return path
    return str(_PROJ_DIR / path)


def expand_env_refs(text: str) -> str:
    def _replace(match: "re.Match[str]") -> str:
        name = match.group("braced") or match.group("bare")
        value = os.environ.get(name)
        fallback = match.group("fallback")
        if fallback is not None:
            return value if value else fallback
        return value if value is not None else match.group(0)

    return _ENV_REF.sub(_replace, text)


def load_yaml_with_env_expansion(path: str) -> dict:
    """
    Read a YAML mapping from ``path`` after environment expansion.

    Raises:
        FileNotFoundError: the file does not exist
        yaml.YAMLError: the text is not valid YAML or its root is not a mapping
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found at: {path}")

    expanded = expand_env_refs(config_path.read_text(encoding="utf-8"))
    try:
        config_data = yaml.safe_load(expanded)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error parsing YAML configuration: {e}")

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise yaml.YAMLError(f"Configuration root must be a mapping, got {type(config_data).__name__}")
    return config_data
