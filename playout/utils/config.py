"""
Configuration loading: an optional YAML file, then environment overrides.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .. import OFFAIR_PAYLOAD_MODES, PlayoutConfig
from ..errors import ConfigError

LOG = logging.getLogger(__name__)

ENV_OVERRIDES = {
    "PLAYOUT_REMOTE_BASE_URL": ("remote_base_url", str),
    "PLAYOUT_REQUEST_TIMEOUT": ("request_timeout", float),
    "PLAYOUT_DATA_PATH": ("data_path", str),
    "PLAYOUT_OFFAIR_PAYLOAD": ("offair_payload", str),
    "LOG_LEVEL": ("log_level", str),
}

_POLICIES = {"dense", "sparse"}


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            document = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.info("No configuration file at %s; using defaults", path)
        return {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse {path}: {exc}") from exc
    if not isinstance(document, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(document).__name__}")
    return document


def _coerce(name: str, value: Any, kind: type) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from exc


def load_config(
    path: Union[str, Path, None] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> PlayoutConfig:
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = _read_yaml(Path(path)) if path else {}

    known = {item.name: item for item in dataclasses.fields(PlayoutConfig)}
    for key in list(values):
        if key not in known:
            LOG.warning("Ignoring unknown configuration key '%s'", key)
            values.pop(key)

    for env_name, (attr, kind) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw:
            values[attr] = _coerce(env_name, raw, kind)

    if "collection_policies" in values:
        policies = values["collection_policies"]
        if not isinstance(policies, dict):
            raise ConfigError("collection_policies must be a mapping of table id to dense|sparse")
        merged = PlayoutConfig().collection_policies
        merged.update({str(table): str(policy).lower() for table, policy in policies.items()})
        values["collection_policies"] = merged

    config = PlayoutConfig(**values)
    if config.offair_payload not in OFFAIR_PAYLOAD_MODES:
        raise ConfigError(
            f"offair_payload must be one of {', '.join(OFFAIR_PAYLOAD_MODES)}, got {config.offair_payload!r}"
        )
    for table_id, policy in config.collection_policies.items():
        if policy not in _POLICIES:
            raise ConfigError(f"Unknown ordering policy {policy!r} for table '{table_id}'")
    config.request_timeout = _coerce("request_timeout", config.request_timeout, float)
    config.max_retries = max(0, _coerce("max_retries", config.max_retries, int))
    return config
