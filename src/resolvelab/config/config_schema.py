"""JSON Schema-based validation for resolvelab YAML configuration.

The schema document lives under ``assets/config-schema.json``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator, ValidationError

logger = logging.getLogger(__name__)


def get_default_schema_path() -> Path:
    """Brief: Resolve the default JSON Schema path for configuration.

    Outputs:
      - Path to ``assets/config-schema.json`` in the nearest ancestor that has
        one (source checkout or editable install).
    """

    here = Path(__file__).resolve()
    for ancestor in here.parents:
        candidate = ancestor / "assets" / "config-schema.json"
        if candidate.is_file():
            return candidate
    return here.parents[3] / "assets" / "config-schema.json"


def load_schema(schema_path: Optional[Path] = None) -> Dict[str, Any]:
    path = schema_path or get_default_schema_path()
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    header = (
        f"Invalid configuration in {config_path}:"
        if config_path
        else "Invalid configuration:"
    )
    lines: List[str] = [header]
    for err in errors:
        instance_path = "/".join(str(p) for p in err.path) or "<root>"
        lines.append(f"- {instance_path}: {err.message}")
    return "\n".join(lines)


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = None,
) -> None:
    """Brief: Validate a parsed YAML configuration mapping against JSON Schema.

    Inputs:
      - cfg: Top-level configuration mapping.
      - schema_path: Optional explicit schema file; defaults to the bundled one.
      - config_path: YAML path used only in error messages.

    Outputs:
      - None on success.

    Raises:
      - ValueError: listing every validation error with its instance path.
      - OSError / json.JSONDecodeError: when the schema cannot be read.

    Example:
      >>> validate_config({"settings": {"packet_loss": 10}})
    """

    schema = load_schema(schema_path)
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.path))
    if errors:
        raise ValueError(_format_errors(errors, config_path=config_path))
    logger.debug("Configuration %s validated", config_path or "<inline>")
