"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads YAML files from ``ledger_config/sets`` and parses them into typed
values: ``EngineSettings``, ``AccountSpec`` lists for industry charts and
``TemplateDefinition`` lists for system templates.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required keys.
* ``compute_checksum`` produces a deterministic SHA-256 hash of a parsed
  file for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from ledger_kernel.domain.dtos import AccountSpec
from ledger_kernel.domain.template import TemplateDefinition

from ledger_batch.domain.types import MonthEndPolicy
from ledger_config.schema import EngineSettings


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """
    Parse EngineSettings from the ``engine`` mapping of settings.yaml.

    Raises:
        KeyError: if ``database_url`` is missing.
        ValueError: on out-of-range values or an unknown month_end_policy.
    """
    return EngineSettings(
        database_url=str(data["database_url"]),
        currency_places=int(data.get("currency_places", 2)),
        max_reference_attempts=int(data.get("max_reference_attempts", 5)),
        plugin_timeout_seconds=float(data.get("plugin_timeout_seconds", 5.0)),
        scheduler_tick_seconds=float(data.get("scheduler_tick_seconds", 60.0)),
        month_end_policy=MonthEndPolicy(
            str(data.get("month_end_policy", MonthEndPolicy.CLAMP.value)).lower()
        ),
        reference_separator=str(data.get("reference_separator", "-")),
    )


def parse_coa(data: dict[str, Any]) -> list[AccountSpec]:
    """
    Parse an industry chart of accounts.

    Raises:
        KeyError: if ``accounts`` or a required account key is missing.
    """
    return [AccountSpec.from_dict(entry) for entry in data["accounts"]]


def parse_templates(data: dict[str, Any]) -> list[TemplateDefinition]:
    """
    Parse event template definitions.

    Raises:
        KeyError: if ``templates`` is missing.
        ValueError: if a definition is malformed.
    """
    return [TemplateDefinition.from_dict(entry) for entry in data["templates"]]


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
