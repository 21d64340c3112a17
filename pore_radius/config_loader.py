import json
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

_CONFIG_PATH = Path(__file__).resolve().with_name("config.yaml")
_ENV_CONFIG_KEY = "PORE_RADIUS_CONFIG_JSON"
_ENV_CONFIG_PATH_KEY = "PORE_RADIUS_CONFIG"


def _deep_update(base: Dict[str, Any], updates: Dict[str, Any]) -> None:
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value


def _resolve_paths(config: Dict[str, Any]) -> None:
    paths = config.setdefault("paths", {}) or {}
    config["paths"] = paths

    input_path = paths.get("input_volume_path")
    if input_path:
        paths["input_volume_path"] = str(Path(input_path).expanduser().resolve())

    output_dir = Path(paths.get("output_dir") or "results").expanduser()
    if not output_dir.is_absolute():
        output_dir = Path.cwd() / output_dir
    paths["output_dir"] = str(output_dir)


def _load_env_overrides() -> Optional[Dict[str, Any]]:
    raw = os.environ.get(_ENV_CONFIG_KEY)
    if not raw:
        return None
    return json.loads(raw)


def _config_path(config_path: Optional[Path]) -> Path:
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get(_ENV_CONFIG_PATH_KEY)
    if env_path:
        return Path(env_path)
    return _CONFIG_PATH


def load_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """
    Load the runtime configuration.

    The JSON payload in ``PORE_RADIUS_CONFIG_JSON`` wins over any file. Otherwise
    the YAML file given by ``config_path``, ``PORE_RADIUS_CONFIG`` or the packaged
    ``config.yaml`` is read. ``overrides`` are deep-merged last.
    """
    env_overrides = _load_env_overrides()
    if env_overrides:
        config = deepcopy(env_overrides)
    else:
        path = _config_path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            config = deepcopy(yaml.safe_load(handle) or {})

    if overrides:
        _deep_update(config, overrides)

    _resolve_paths(config)
    return config
