# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/opsentry/config/loader.py

import logging
import os
from pathlib import Path
from typing import Mapping

import yaml
from pydantic import ValidationError as PydanticValidationError

from opsentry.errors import ConfigError
from .models import OpsentryConfig

log = logging.getLogger("opsentry")

# environment variable -> (section, key)
ENV_KEYS = {
    "AZURE_SUBSCRIPTION_ID": ("azure", "subscription_id"),
    "AZURE_RESOURCE_GROUP": ("azure", "resource_group"),
    "AZURE_CLUSTER_NAME": ("azure", "cluster_name"),
    "OPERATION_CR_NAMESPACE": ("reconciler", "namespace"),
    "HEALTH_NAMESPACE": ("health", "namespace"),
}

REQUIRED_ENV = ("AZURE_SUBSCRIPTION_ID", "AZURE_RESOURCE_GROUP", "AZURE_CLUSTER_NAME")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def _from_env(env: Mapping[str, str]) -> dict:
    data: dict = {}
    for var, (section, key) in ENV_KEYS.items():
        value = env.get(var)
        if value:
            data.setdefault(section, {})[key] = value
    return data


def _missing_identity(data: dict) -> list[str]:
    azure = data.get("azure") or {}
    missing = []
    for var in REQUIRED_ENV:
        _, key = ENV_KEYS[var]
        if not str(azure.get(key) or "").strip():
            missing.append(var)
    return missing


def load_config(path: str | Path | None = None, env: Mapping[str, str] | None = None) -> OpsentryConfig:
    """
    Load and validate the controller config.

    Sources, later wins:
      1. YAML file at *path* (or ``OPSENTRY_CONFIG``), ``${ENV_VAR}`` expanded
      2. environment variables (``AZURE_SUBSCRIPTION_ID``, ``AZURE_RESOURCE_GROUP``,
         ``AZURE_CLUSTER_NAME``, ``OPERATION_CR_NAMESPACE``, ``HEALTH_NAMESPACE``)

    Raises ConfigError when the cluster identity is incomplete or the
    merged document does not validate.
    """
    env = os.environ if env is None else env
    data: dict = {}

    path = path or env.get("OPSENTRY_CONFIG")
    if path:
        path = Path(path)
        if not path.is_file():
            raise ConfigError(f"config file {path} does not exist")
        log.debug("Loading config from %s", path)
        data = _load_yaml(path)
    else:
        log.debug("No config file given, using environment only")

    _deep_merge(data, _from_env(env))

    missing = _missing_identity(data)
    if missing:
        raise ConfigError(f"{', '.join(missing)} environment variable(s) required")

    try:
        return OpsentryConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc
