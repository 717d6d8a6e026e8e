"""Pre-flight check: is a forest configuration runnable with the current settings?"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from forest import secrets
from forest.config import ForestConfig, load_forest_config


def _provider_has_key(cfg: dict, env_vars: dict[str, str]) -> bool:
    if cfg.get("api_key_literal"):
        return True
    secret = cfg.get("api_key_secret")
    if not secret:
        return False
    return bool(secrets.get_secret(secret) or env_vars.get(secret))


def _check_brains(
    config: ForestConfig, settings: dict[str, Any], env_vars: dict[str, str]
) -> tuple[bool, str]:
    brains = settings.get("brains") or {}
    providers = settings.get("providers") or {}
    for name, nim in config.nims.items():
        brain = brains.get(nim.brain)
        if not isinstance(brain, dict):
            return False, f"nim {name!r} uses brain {nim.brain!r} which is not configured"
        provider_id = brain.get("provider")
        if provider_id not in providers:
            return False, f"brain {nim.brain!r} references unknown provider {provider_id!r}"
        if not _provider_has_key(providers[provider_id], env_vars):
            return False, f"Provider {provider_id!r} has no API key set"
    return True, "ok"


def is_configured(
    config_path: Path,
    settings: dict[str, Any],
    env_path: Path | None = None,
) -> tuple[bool, str]:
    """Check whether forest.yaml and settings are sufficient to start. Returns (ok, reason)."""
    if not config_path.exists():
        return False, f"{config_path.name} not found"
    try:
        config = load_forest_config(config_path)
    except yaml.YAMLError as e:
        return False, f"{config_path.name} parse error: {e}"
    except (ValidationError, ValueError) as e:
        return False, f"{config_path.name} invalid: {e}"
    if not config.treehouses and not config.nims:
        return False, "No treehouses or nims configured"
    env_vars = dict(dotenv_values(env_path)) if env_path and env_path.exists() else {}
    env_vars.update({k: v for k, v in os.environ.items() if isinstance(v, str)})
    return _check_brains(config, settings, env_vars)
