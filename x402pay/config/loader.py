"""Configuration loading utilities."""

import json
import re
from pathlib import Path
from typing import Any, Callable

from x402pay.config.schema import Config

# Keys whose children are data (network names), not config field names.
_PRESERVED_KEY_SECTIONS = {"rpc_urls"}
_CAMEL_BOUNDARY = re.compile(r"(?<=.)(?=[A-Z])")


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".x402pay" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object (environment variables still apply to
        fields the file does not set).
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("config root must be a JSON object")
            return Config(**convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            raise ValueError(
                f"Failed to load config from {path}: {e}. "
                "Fix the file or remove it to use defaults."
            ) from e

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump())

    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def _rename_keys(data: Any, rename: Callable[[str], str]) -> Any:
    if isinstance(data, list):
        return [_rename_keys(item, rename) for item in data]
    if not isinstance(data, dict):
        return data
    renamed: dict[str, Any] = {}
    for key, value in data.items():
        new_key = rename(key)
        if {key, new_key} & _PRESERVED_KEY_SECTIONS and isinstance(value, dict):
            renamed[new_key] = dict(value)
        else:
            renamed[new_key] = _rename_keys(value, rename)
    return renamed


def convert_keys(data: Any) -> Any:
    """camelCase JSON keys -> snake_case field names."""
    return _rename_keys(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """snake_case field names -> camelCase JSON keys."""
    return _rename_keys(data, snake_to_camel)


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)
