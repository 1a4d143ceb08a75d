# marksheet_digitizer/config_io.py
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .settings import DEFAULTS, Settings, apply_overrides

# Environment variables consulted after the config file, before CLI overrides
ENV_API_KEYS = ("GEMINI_API_KEY", "GOOGLE_API_KEY")
ENV_STORE_DIR = "MARKSHEET_STORE_DIR"


def load_config_any(path: str | Path) -> Dict[str, Any]:
    """
    Prefer YAML, but transparently accept JSON.
    - If extension is .yml/.yaml -> use YAML
    - If extension is .json -> use JSON
    - Otherwise: try YAML first, then JSON
    """
    p = Path(path)
    data = p.read_text(encoding="utf-8")
    ext = p.suffix.lower()

    if ext in {".yml", ".yaml"}:
        cfg = yaml.safe_load(data)
    elif ext == ".json":
        cfg = json.loads(data)
    else:
        try:
            cfg = yaml.safe_load(data)
        except yaml.YAMLError:
            cfg = json.loads(data)

    if cfg is None:
        cfg = {}
    if not isinstance(cfg, dict):
        raise ValueError("Config root must be a mapping/object.")

    return cfg


def _env_values() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name in ENV_API_KEYS:
        if os.environ.get(name):
            values["api_key"] = os.environ[name]
            break
    if os.environ.get(ENV_STORE_DIR):
        values["store_dir"] = os.environ[ENV_STORE_DIR]
    return values


def load_settings(path: Optional[str | Path] = None, **overrides) -> Settings:
    """
    Build Settings from defaults <- config file <- environment <- overrides.
    Keys in the config file must be Settings field names.
    """
    settings = DEFAULTS
    if path:
        settings = apply_overrides(settings, **load_config_any(path))
    settings = apply_overrides(settings, **_env_values())
    return apply_overrides(settings, **overrides)
