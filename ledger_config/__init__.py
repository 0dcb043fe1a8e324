"""
ledger_config -- public entrypoints for engine configuration.

Responsibility:
    Reads the YAML files under ``ledger_config/sets`` and returns typed
    values.  Nothing else in the project opens configuration files or reads
    environment variables.

Architecture position:
    Configuration -- sits above ``ledger_kernel``.  The kernel loads chart
    and template sets through these functions only lazily, from the
    seeding operations that need them.

Failure modes:
    - ``FileNotFoundError`` -- unknown industry or missing settings file.
    - ``ValueError`` / ``KeyError`` -- malformed YAML content.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ledger_kernel.domain.dtos import AccountSpec
from ledger_kernel.domain.template import TemplateDefinition

from ledger_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_coa,
    parse_settings,
    parse_templates,
)
from ledger_config.schema import EngineSettings

_logger = logging.getLogger("ledger_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

# Overrides settings.yaml database_url when set
DATABASE_URL_ENV = "LEDGER_DATABASE_URL"


def get_active_settings(
    path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> EngineSettings:
    """
    Load engine settings.

    Args:
        path: settings file; defaults to ``sets/settings.yaml``.
        environ: environment mapping; defaults to ``os.environ``.
    """
    settings_path = path or (_DEFAULT_CONFIG_DIR / "settings.yaml")
    data = load_yaml_file(settings_path)
    engine = dict(data["engine"])

    env = os.environ if environ is None else environ
    if env.get(DATABASE_URL_ENV):
        engine["database_url"] = env[DATABASE_URL_ENV]

    settings = parse_settings(engine)
    _logger.info(
        "ledger_settings_loaded",
        extra={
            "settings_path": str(settings_path),
            "checksum": compute_checksum(data),
            "month_end_policy": settings.month_end_policy.value,
        },
    )
    return settings


def available_industries(config_dir: Path | None = None) -> list[str]:
    coa_dir = (config_dir or _DEFAULT_CONFIG_DIR) / "coa"
    return sorted(p.stem for p in coa_dir.glob("*.yaml"))


def load_coa_template(industry: str, config_dir: Path | None = None) -> list[AccountSpec]:
    """
    Starter chart for an industry (``sets/coa/<industry>.yaml``).

    Raises:
        FileNotFoundError: if no chart exists for the industry.
    """
    name = industry.strip().lower()
    path = (config_dir or _DEFAULT_CONFIG_DIR) / "coa" / f"{name}.yaml"
    if not path.exists():
        raise FileNotFoundError(
            f"No chart of accounts for industry '{industry}' "
            f"(available: {', '.join(available_industries(config_dir)) or 'none'})"
        )
    return parse_coa(load_yaml_file(path))


def load_system_templates(config_dir: Path | None = None) -> list[TemplateDefinition]:
    """System event templates (``sets/templates/system.yaml``)."""
    path = (config_dir or _DEFAULT_CONFIG_DIR) / "templates" / "system.yaml"
    return parse_templates(load_yaml_file(path))


__all__ = [
    "DATABASE_URL_ENV",
    "EngineSettings",
    "available_industries",
    "get_active_settings",
    "load_coa_template",
    "load_system_templates",
]
