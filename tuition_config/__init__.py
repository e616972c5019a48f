"""
tuition_config -- single public entrypoint for billing settings.

Responsibility:
    Provides the only way to obtain billing settings at runtime through
    ``get_active_settings()``.  No other component reads settings files
    directly.

Architecture position:
    Configuration -- YAML-driven settings.  Sits beside ``tuition_kernel``;
    the kernel never imports from ``tuition_config``.
    ``tuition_config.bridges`` translates settings into the kernel's
    ``BillingPolicy``.

Invariants enforced:
    - Single entrypoint: all runtime settings flow through
      ``get_active_settings()``.
    - Returned settings have passed ``BillingSettings`` validation.

Failure modes:
    - ``FileNotFoundError`` -- neither the institution file nor
      ``default.yaml`` exists in the settings directory.
    - ``ValueError`` -- invalid institution name or invalid settings values.
    - ``yaml.YAMLError`` -- malformed settings file.

Audit relevance:
    Every successful call emits a ``BILLING_CONFIG_TRACE`` log entry with
    the institution, the file used, and the SHA-256 checksum of the loaded
    document, tying each billing run to the exact settings that priced it.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from tuition_config.loader import compute_checksum, load_yaml_file
from tuition_config.settings import BillingSettings

_logger = logging.getLogger("tuition_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_DEFAULT_SET = "default"
_INSTITUTION_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def get_active_settings(
    institution: str | None = None,
    config_dir: Path | None = None,
) -> BillingSettings:
    """
    Load billing settings for ``institution``.

    Looks for ``<config_dir>/<institution>.yaml`` and falls back to
    ``<config_dir>/default.yaml`` when the institution has no file (or
    when no institution is given).

    Raises:
        FileNotFoundError: If no usable settings file exists.
        ValueError: If the institution name or settings values are invalid.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path, name = _find_settings_file(sets_dir, institution)

    data = load_yaml_file(path)
    settings = BillingSettings.from_dict(data, institution=name)
    checksum = compute_checksum(data)

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "institution": name,
            "requested_institution": institution,
            "settings_file": str(path),
            "checksum": checksum,
            "vat_rate": str(settings.vat_rate),
            "credit_card_rate_count": len(settings.credit_card_rates),
        },
    )
    return settings


def _find_settings_file(sets_dir: Path, institution: str | None) -> tuple[Path, str]:
    if not sets_dir.is_dir():
        raise FileNotFoundError(f"Settings directory not found: {sets_dir}")

    if institution is not None:
        if not _INSTITUTION_NAME.match(institution):
            raise ValueError(f"Invalid institution name: {institution!r}")
        candidate = sets_dir / f"{institution}.yaml"
        if candidate.is_file():
            return candidate, institution

    default = sets_dir / f"{_DEFAULT_SET}.yaml"
    if not default.is_file():
        raise FileNotFoundError(
            f"No settings for institution={institution!r} and no {default.name} in {sets_dir}"
        )
    return default, _DEFAULT_SET


__all__ = ["BillingSettings", "get_active_settings"]
