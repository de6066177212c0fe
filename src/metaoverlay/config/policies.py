"""Customization policies loaded from a JSON file."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Final

from pydantic import ValidationError as PayloadValidationError

from metaoverlay.adapters.schema import PolicyListAdapter
from metaoverlay.domain.model import CustomizationPolicy

from .errors import ConfigurationError, MissingConfigurationError

POLICY_FILE_ENV: Final[str] = "METAOVERLAY_POLICY_FILE"


def load_policies(path: Path | str | None = None) -> list[CustomizationPolicy]:
    """Read a JSON list of policies; no file configured means no policies."""

    source = path if path is not None else os.getenv(POLICY_FILE_ENV)
    if not source:
        return []
    policy_path = Path(source).expanduser()
    try:
        payloads = PolicyListAdapter.validate_json(policy_path.read_bytes())
    except FileNotFoundError as exc:
        raise MissingConfigurationError(f"Policy file not found: {policy_path}") from exc
    except PayloadValidationError as exc:
        raise ConfigurationError(f"Invalid policy file {policy_path}: {exc}") from exc
    try:
        return [payload.to_domain() for payload in payloads]
    except ValueError as exc:
        raise ConfigurationError(f"Invalid field pattern in {policy_path}: {exc}") from exc
