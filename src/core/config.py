"""Runtime configuration model for labintake.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_CHUNK_ROW_LIMIT,
    DEFAULT_INTAKE_ROOT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_SINK_TIMEOUT_SECONDS,
    DEFAULT_STORE_ROOT,
    DEFAULT_TIME_BUDGET_SECONDS,
)
from core.errors import LabIntakeConfigError

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class LabIntakeConfig:
    """Validated runtime configuration.

    Attributes:
        intake_root: Root directory holding the four staging areas.
        store_root: Root directory for records, notices, jobs, and ledger.
        sink_base_url: Optional base URL of the remote result sink.
        sink_api_key: Optional API key sent to the remote result sink.
        sink_timeout_seconds: Per-request timeout for the remote sink.
        time_budget_seconds: Wall-clock budget for one automated file.
        chunk_row_limit: Row budget for one chunked invocation.
        system_email: Fallback installer email for unresolved samples.
        monthly_subdirs: Whether stage moves target month-year subdirectories.
        field_registry_path: Optional YAML file overriding field access levels.
        log_level: Minimum structured log level.
    """

    intake_root: Path
    store_root: Path
    sink_base_url: str | None
    sink_api_key: str | None
    sink_timeout_seconds: float
    time_budget_seconds: float
    chunk_row_limit: int
    system_email: str | None
    monthly_subdirs: bool
    field_registry_path: Path | None
    log_level: str

    @classmethod
    def from_env(cls) -> "LabIntakeConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            LabIntakeConfigError: If environment values are invalid.
        """
        intake_root_value = os.getenv("LABINTAKE_INTAKE_ROOT", str(DEFAULT_INTAKE_ROOT))
        store_root_value = os.getenv("LABINTAKE_STORE_ROOT", str(DEFAULT_STORE_ROOT))
        registry_value = os.getenv("LABINTAKE_FIELD_REGISTRY")
        return cls(
            intake_root=Path(intake_root_value).expanduser().resolve(),
            store_root=Path(store_root_value).expanduser().resolve(),
            sink_base_url=os.getenv("LABINTAKE_SINK_URL") or None,
            sink_api_key=os.getenv("LABINTAKE_SINK_KEY") or None,
            sink_timeout_seconds=_parse_positive_float(
                "LABINTAKE_SINK_TIMEOUT", DEFAULT_SINK_TIMEOUT_SECONDS
            ),
            time_budget_seconds=_parse_positive_float(
                "LABINTAKE_TIME_BUDGET", DEFAULT_TIME_BUDGET_SECONDS
            ),
            chunk_row_limit=_parse_positive_int("LABINTAKE_CHUNK_ROWS", DEFAULT_CHUNK_ROW_LIMIT),
            system_email=os.getenv("LABINTAKE_SYSTEM_EMAIL") or None,
            monthly_subdirs=_parse_bool("LABINTAKE_MONTHLY_SUBDIRS"),
            field_registry_path=Path(registry_value).expanduser().resolve()
            if registry_value
            else None,
            log_level=_parse_log_level(os.getenv("LABINTAKE_LOG_LEVEL", DEFAULT_LOG_LEVEL)),
        )


def _parse_positive_float(env_name: str, default: float) -> float:
    """Parse a positive float environment value.

    Args:
        env_name: Environment variable name.
        default: Value used when the variable is unset.

    Returns:
        Parsed float.

    Raises:
        LabIntakeConfigError: If value is not a positive number.
    """
    raw_value = os.getenv(env_name)
    if raw_value is None:
        return default
    try:
        value = float(raw_value)
    except ValueError as error:
        raise LabIntakeConfigError(
            f"Invalid {env_name} value: expected number of seconds, got '{raw_value}'. "
            f"Set {env_name} to a positive number."
        ) from error
    if value <= 0:
        raise LabIntakeConfigError(
            f"Invalid {env_name} value: expected positive number, got '{raw_value}'. "
            f"Set {env_name} to a value greater than zero."
        )
    return value


def _parse_positive_int(env_name: str, default: int) -> int:
    """Parse a positive integer environment value."""
    raw_value = os.getenv(env_name)
    if raw_value is None:
        return default
    try:
        value = int(raw_value)
    except ValueError as error:
        raise LabIntakeConfigError(
            f"Invalid {env_name} value: expected integer, got '{raw_value}'. "
            f"Set {env_name} to a numeric value."
        ) from error
    if value <= 0:
        raise LabIntakeConfigError(
            f"Invalid {env_name} value: expected positive integer, got '{raw_value}'. "
            f"Set {env_name} to a value greater than zero."
        )
    return value


def _parse_bool(env_name: str) -> bool:
    """Parse a boolean flag environment value."""
    raw_value = os.getenv(env_name, "").strip().lower()
    if raw_value in _TRUE_VALUES:
        return True
    if raw_value in _FALSE_VALUES:
        return False
    raise LabIntakeConfigError(
        f"Invalid {env_name} value: expected boolean, got '{raw_value}'. "
        f"Use one of {_TRUE_VALUES + _FALSE_VALUES[:-1]}."
    )


def _parse_log_level(raw_value: str) -> str:
    """Parse and normalize a log level name."""
    level = raw_value.strip().upper()
    if level not in _LOG_LEVELS:
        raise LabIntakeConfigError(
            f"Invalid LABINTAKE_LOG_LEVEL value: '{raw_value}'. "
            f"Use one of {_LOG_LEVELS}."
        )
    return level
