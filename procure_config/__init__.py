"""
procure_config -- single public entrypoint for workflow configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way to obtain configuration at
    runtime.  No other component reads configuration files or environment
    variables.  Returns a frozen ``ProcureSettings``.

Architecture position:
    Configuration -- sits above ``procure_kernel`` and beside
    ``procure_services``.  The kernel and engines never import it; services
    receive the values they need as constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``ValueError`` / ``KeyError`` -- schema validation failures.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from procure_config.loader import load_yaml_file, parse_settings
from procure_config.schema import (
    EscalationSettings,
    LinkageSettings,
    LoggingSettings,
    PaginationSettings,
    ProcureSettings,
)

_logger = logging.getLogger("procure.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

DATABASE_URL_ENV = "PROCURE_DATABASE_URL"


def get_active_config(
    set_name: str = "default",
    config_dir: Path | None = None,
) -> ProcureSettings:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned settings passed schema validation.
        - ``PROCURE_DATABASE_URL``, when set, overrides ``database_url``.
        - A ``PROCURE_CONFIG_TRACE`` log entry is emitted on every call.

    Args:
        set_name: Configuration set name (file ``<set_name>.yaml``).
        config_dir: Override path to the configuration sets directory.
            Defaults to procure_config/sets/.
    """
    path = (config_dir or _DEFAULT_CONFIG_DIR) / f"{set_name}.yaml"
    settings = parse_settings(load_yaml_file(path))

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        settings = replace(settings, database_url=database_url)

    _logger.info(
        "PROCURE_CONFIG_TRACE",
        extra={
            "trace_type": "PROCURE_CONFIG_TRACE",
            "config_name": settings.name,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "database_url_overridden": bool(database_url),
        },
    )
    return settings


__all__ = [
    "DATABASE_URL_ENV",
    "EscalationSettings",
    "LinkageSettings",
    "LoggingSettings",
    "PaginationSettings",
    "ProcureSettings",
    "get_active_config",
]
