"""YAML configuration loading for the resolvelab CLI.

Inputs:
  - A YAML file with optional ``logging``, ``settings``, ``upstream`` and
    ``cache`` blocks, the process environment, and CLI overrides.

Outputs:
  - Validated configuration mapping plus builders for the engine objects
    (ResolutionSettings, DnsPythonUpstream, TieredCache).

Precedence:
  - CLI flags override ``RESOLVELAB_<FIELD>`` environment variables, which
    override the ``settings`` block of the file, which overrides defaults.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional

import yaml

from ..cache import TieredCache
from ..settings import ResolutionSettings
from ..upstream import DnsPythonUpstream
from .config_schema import validate_config

ENV_PREFIX = "RESOLVELAB_"


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse an environment value as YAML.

    Inputs:
      - text: String containing a YAML scalar/list/dict.

    Outputs:
      - Any: Parsed value, or the original string when it is not valid YAML.
    """

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def parse_config_file(config_path: str) -> Dict[str, Any]:
    """Brief: Read and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.

    Outputs:
      - dict: Parsed configuration mapping ({} for an empty file).

    Raises:
      - OSError: when the file cannot be read.
      - ValueError: when the YAML is malformed or fails schema validation.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    validate_config(cfg, config_path=config_path)
    return cfg


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Brief: Collect RESOLVELAB_<FIELD> settings overrides from the environment.

    Inputs:
      - environ: Environment mapping (defaults to os.environ).

    Outputs:
      - dict of settings field name to YAML-parsed value. Variables that do not
        name a ResolutionSettings field are ignored.

    Example:
      >>> env_overrides({"RESOLVELAB_PACKET_LOSS": "25", "HOME": "/root"})
      {'packet_loss': 25}
    """

    env = os.environ if environ is None else environ
    fields = set(ResolutionSettings.model_fields)
    out: Dict[str, Any] = {}
    for key, value in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name in fields:
            out[name] = _parse_yaml_value(str(value))
    return out


def build_settings(
    cfg: Optional[Dict[str, Any]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ResolutionSettings:
    """Brief: Merge file, environment and CLI values into ResolutionSettings.

    Inputs:
      - cfg: Parsed configuration mapping.
      - environ: Environment mapping (defaults to os.environ).
      - overrides: CLI values; None entries are skipped.

    Outputs:
      - ResolutionSettings.

    Raises:
      - pydantic.ValidationError: when a merged value is invalid.
    """

    merged: Dict[str, Any] = dict((cfg or {}).get("settings") or {})
    merged.update(env_overrides(environ))
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value
    return ResolutionSettings(**merged)


def build_upstream(cfg: Optional[Dict[str, Any]] = None) -> DnsPythonUpstream:
    """Brief: DnsPythonUpstream from the ``upstream`` block (system resolver
    configuration when no nameservers are listed)."""

    up = (cfg or {}).get("upstream") or {}
    return DnsPythonUpstream(
        nameservers=up.get("nameservers") or None,
        timeout_ms=int(up.get("timeout_ms", 2000)),
    )


def build_cache(cfg: Optional[Dict[str, Any]] = None) -> TieredCache:
    cache_cfg = (cfg or {}).get("cache") or {}
    return TieredCache(max_entries=int(cache_cfg.get("max_entries", 4096)))
