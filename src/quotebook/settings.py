"""Runtime settings for quotebook, read from the environment."""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path

from .errors import ValidationError

# Can be overridden via QUOTEBOOK_DATA_DIR environment variable
_default_data_dir = Path(__file__).parent.parent.parent / "data"

DEFAULT_NUMBER_WIDTH = 4
DEFAULT_VAT_RATE = Decimal("25")
DEFAULT_VALIDITY_DAYS = 30
DEFAULT_CONFLICT_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 0.05
DEFAULT_LOG_LEVEL = "INFO"


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(name, f"expected an integer, got {raw!r}")
    if value < minimum:
        raise ValidationError(name, f"must be >= {minimum}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError(name, f"expected a number, got {raw!r}")
    if value < 0:
        raise ValidationError(name, "must be >= 0")
    return value


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ValidationError(name, f"expected a decimal, got {raw!r}")
    if not value.is_finite() or value < 0:
        raise ValidationError(name, "must be a finite number >= 0")
    return value


@dataclass(frozen=True)
class Settings:
    """Configuration shared by the store, the aggregate, the API and the CLI."""

    data_dir: Path = _default_data_dir
    number_width: int = DEFAULT_NUMBER_WIDTH
    vat_rate: Decimal = DEFAULT_VAT_RATE
    validity_days: int = DEFAULT_VALIDITY_DAYS
    conflict_retries: int = DEFAULT_CONFLICT_RETRIES
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from QUOTEBOOK_* environment variables.

        Raises:
            ValidationError: If a variable holds an unusable value.
        """
        return cls(
            data_dir=Path(os.environ.get("QUOTEBOOK_DATA_DIR", _default_data_dir)),
            number_width=_env_int("QUOTEBOOK_NUMBER_WIDTH", DEFAULT_NUMBER_WIDTH, minimum=1),
            vat_rate=_env_decimal("QUOTEBOOK_VAT_RATE", DEFAULT_VAT_RATE),
            validity_days=_env_int("QUOTEBOOK_VALIDITY_DAYS", DEFAULT_VALIDITY_DAYS),
            conflict_retries=_env_int("QUOTEBOOK_CONFLICT_RETRIES", DEFAULT_CONFLICT_RETRIES),
            retry_base_delay=_env_float("QUOTEBOOK_RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY),
            log_level=os.environ.get("QUOTEBOOK_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        )
