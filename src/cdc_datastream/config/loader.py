"""Settings loader: built-in YAML defaults, an optional override file and env vars."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from cdc_datastream.config.models import OrchestratorSettings

DEFAULT_SETTINGS = Path(__file__).parent / "defaults" / "settings.yaml"

# Matches ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?}")


def _env_value(match: re.Match[str]) -> str:
    var_name, default = match.group(1), match.group(2)
    env_val = os.environ.get(var_name)
    if env_val is not None:
        return env_val
    if default is not None:
        return default
    msg = f"Environment variable '{var_name}' is not set and no default provided"
    raise ValueError(msg)


def resolve_env_vars(data: Any) -> Any:
    """Recursively resolve ${VAR} and ${VAR:-default} in parsed YAML data."""
    if isinstance(data, str):
        return _ENV_PATTERN.sub(_env_value, data)
    if isinstance(data, dict):
        return {k: resolve_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a settings YAML file with env vars resolved."""
    p = Path(path)
    if not p.exists():
        msg = f"Settings file not found: {p}"
        raise FileNotFoundError(msg)
    try:
        with p.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        msg = f"Failed to parse YAML in {p}: {exc}"
        raise ValueError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {p}, got {type(data).__name__}"
        raise TypeError(msg)
    return resolve_env_vars(data)  # type: ignore[no-any-return]


def load_settings(path: str | Path | None = None) -> OrchestratorSettings:
    """Load orchestrator settings from built-in defaults plus optional overrides.

    Overrides replace top-level keys; the ``proxy`` section is merged key by key.
    """
    data = load_yaml(DEFAULT_SETTINGS)
    if path is not None:
        overrides = load_yaml(path)
        proxy = {**data.get("proxy", {}), **(overrides.pop("proxy", None) or {})}
        data = {**data, **overrides, "proxy": proxy}
    try:
        return OrchestratorSettings.model_validate(data)
    except ValidationError as exc:
        source = path or "built-in defaults"
        msg = f"Invalid settings ({source}):\n{exc}"
        raise ValueError(msg) from exc
