# appforge/config.py
from __future__ import annotations
"""
Configuration loader for App Forge.

Environment variables:

# OpenAI
- OPENAI_API_KEY=...              # required for real model calls
- OPENAI_BASE_URL=...             # optional, custom/proxy base URL
- APPFORGE_MODEL=gpt-5-mini       # default model unless a stage overrides it
- APPFORGE_MODEL_<STAGE>=...      # per-stage model (PLAN, FILE_CODE, REVIEW, MODIFY,
                                  #   ANALYZE_CHANGES, ANALYZE_IMPORT, CHAT)
- APPFORGE_TIMEOUT_SEC=600
- APPFORGE_MAX_RETRIES=2

# Storage / runtime
- APPFORGE_STORE=.appforge/projects.json
- APPFORGE_ACCEPT_TRUNCATED=1     # keep a file left open at end-of-stream
- APPFORGE_HOST / APPFORGE_PORT
- APPFORGE_LOG_LEVEL=INFO

Notes:
- The client reads the API key from the env var named in cfg["llm"]["api_key_env"];
  secrets are never written to the config file.
- Precedence: environment > config file (JSON, deep-merged) > DEFAULT_CONFIG.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import jsonschema
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

STAGES = ("PLAN", "FILE_CODE", "REVIEW", "MODIFY", "ANALYZE_CHANGES", "ANALYZE_IMPORT", "CHAT")

DEFAULT_CONFIG_PATH = Path(".appforge") / "config.json"


class ConfigError(ValueError):
    """The merged configuration does not match CONFIG_SCHEMA."""


def load_env_variables() -> None:
    """Load a local .env if present (non-destructive)."""
    load_dotenv(override=False)


DEFAULT_CONFIG: Dict[str, Any] = {
    "llm": {
        "model": "gpt-5-mini",
        "timeout_sec": 600.0,
        "max_retries": 2,
        "max_output_tokens": 32000,
        "base_url": None,
        # Which env var to read the key from (do NOT write secrets to config.json)
        "api_key_env": "OPENAI_API_KEY",
        # Per-stage model mapping; keys are stage names.
        "model_map": {"PLAN": "gpt-5", "REVIEW": "gpt-5", "FILE_CODE": "gpt-5-mini", "CHAT": "gpt-5-mini"},
    },
    "store": {"path": ".appforge/projects.json"},
    "parser": {"accept_truncated": True},
    "server": {"host": "127.0.0.1", "port": 8770},
    "logging": {"level": "INFO", "file": "appforge.log", "structured": True},
}


CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "llm": {
            "type": "object",
            "properties": {
                "model": {"type": "string", "minLength": 1},
                "timeout_sec": {"type": "number", "exclusiveMinimum": 0},
                "max_retries": {"type": "integer", "minimum": 0},
                "max_output_tokens": {"type": "integer", "minimum": 1},
                "base_url": {"type": ["string", "null"]},
                "api_key_env": {"type": "string"},
                "model_map": {"type": "object", "additionalProperties": {"type": "string"}},
            },
            "required": ["model", "timeout_sec", "max_retries", "api_key_env"],
        },
        "store": {
            "type": "object",
            "properties": {"path": {"type": "string", "minLength": 1}},
            "required": ["path"],
        },
        "parser": {
            "type": "object",
            "properties": {"accept_truncated": {"type": "boolean"}},
            "required": ["accept_truncated"],
        },
        "server": {
            "type": "object",
            "properties": {
                "host": {"type": "string"},
                "port": {"type": "integer", "minimum": 1, "maximum": 65535},
            },
            "required": ["host", "port"],
        },
        "logging": {
            "type": "object",
            "properties": {
                "level": {"type": "string"},
                "file": {"type": ["string", "null"]},
                "structured": {"type": "boolean"},
            },
        },
    },
    "required": ["llm", "store", "parser", "server"],
    "additionalProperties": True,
}


def _env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return int(val.strip())
    except ValueError:
        logger.warning("ignoring non-integer %s=%r", name, val)
        return default


def _env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return float(val.strip())
    except ValueError:
        logger.warning("ignoring non-numeric %s=%r", name, val)
        return default


def _env_bool(name: str, default: bool) -> bool:
    """Accepts (case-insensitive) '1','true','yes','on' / '0','false','no','off'."""
    val = os.getenv(name)
    if val is None:
        return default
    v = val.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return default


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    llm = cfg.setdefault("llm", {})
    model = os.getenv("APPFORGE_MODEL")
    if model and model.strip():
        llm["model"] = model.strip()
    base_url = os.getenv("OPENAI_BASE_URL")
    if base_url and base_url.strip():
        llm["base_url"] = base_url.strip()
    llm["timeout_sec"] = _env_float("APPFORGE_TIMEOUT_SEC", llm.get("timeout_sec", 600.0))
    llm["max_retries"] = _env_int("APPFORGE_MAX_RETRIES", llm.get("max_retries", 2))

    # APPFORGE_MODEL_<STAGE> env vars are merged into model_map.
    model_map = dict(llm.get("model_map") or {})
    prefix = "APPFORGE_MODEL_"
    for k, v in os.environ.items():
        if k.startswith(prefix) and k != prefix and v.strip():
            model_map[k[len(prefix):].upper()] = v.strip()
    llm["model_map"] = model_map

    store = os.getenv("APPFORGE_STORE")
    if store and store.strip():
        cfg.setdefault("store", {})["path"] = store.strip()

    parser = cfg.setdefault("parser", {})
    parser["accept_truncated"] = _env_bool("APPFORGE_ACCEPT_TRUNCATED", parser.get("accept_truncated", True))

    server = cfg.setdefault("server", {})
    host = os.getenv("APPFORGE_HOST")
    if host and host.strip():
        server["host"] = host.strip()
    server["port"] = _env_int("APPFORGE_PORT", server.get("port", 8770))

    level = os.getenv("APPFORGE_LOG_LEVEL")
    if level and level.strip():
        cfg.setdefault("logging", {})["level"] = level.strip().upper()


def validate_config(cfg: Dict[str, Any]) -> None:
    try:
        jsonschema.validate(cfg, CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"invalid configuration at {where}: {e.message}") from e


def load_config(explicit_path: Optional[str] = None) -> Tuple[Dict[str, Any], Optional[Path]]:
    """
    Load the JSON config file if present, deep-merge onto defaults, then apply
    environment overrides and validate. Returns (config, path_used or None).
    """
    load_env_variables()
    path = Path(explicit_path) if explicit_path else DEFAULT_CONFIG_PATH
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    used: Optional[Path] = None
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigError(f"config file {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"config file {path} must contain a JSON object")
        cfg = _deep_merge(cfg, data)
        used = path
    elif explicit_path:
        raise ConfigError(f"config file not found: {path}")

    _apply_env_overrides(cfg)
    validate_config(cfg)
    return cfg, used


def get_model_for_stage(stage: str, cfg: Dict[str, Any]) -> str:
    """
    Resolve the model for a named stage.

    Resolution order: cfg['llm']['model_map'][STAGE] (env APPFORGE_MODEL_<STAGE>
    is already merged there by load_config) -> cfg['llm']['model'] ->
    DEFAULT_CONFIG['llm']['model'].
    """
    llm = cfg.get("llm") or {}
    model_map = llm.get("model_map") or {}
    for key in (stage, stage.upper(), stage.lower()):
        v = model_map.get(key)
        if v:
            return str(v)
    return str(llm.get("model") or DEFAULT_CONFIG["llm"]["model"])


def save_default_config(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(DEFAULT_CONFIG, indent=2, ensure_ascii=False), encoding="utf-8")


__all__ = [
    "CONFIG_SCHEMA",
    "ConfigError",
    "DEFAULT_CONFIG",
    "STAGES",
    "get_model_for_stage",
    "load_config",
    "load_env_variables",
    "save_default_config",
    "validate_config",
]
