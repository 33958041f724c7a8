"""Input validation for addresses, amounts, dates and environment values."""

import os
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence, TypeVar, Union

from web3 import Web3

T = TypeVar("T")


def validate_address(value: Optional[str], name: str) -> str:
    """Return the checksummed address or raise ValueError."""
    if not value:
        raise ValueError(f"{name} is required")
    if not Web3.is_address(value):
        raise ValueError(
            f'Invalid {name}: "{value}". Must be a valid Ethereum address (0x + 40 hex chars).'
        )
    return Web3.to_checksum_address(value)


def require_env(key: str) -> str:
    value = os.getenv(key)
    if not value:
        raise ValueError(f"Missing required environment variable: {key}")
    return value


def validate_amount(value: Union[str, int, float, Decimal, None], name: str) -> Decimal:
    if value is None or value == "":
        raise ValueError(f"{name} is required")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f'Invalid {name}: "{value}". Must be a valid number.')
    if not amount.is_finite():
        raise ValueError(f'Invalid {name}: "{value}". Must be a valid number.')
    if amount <= 0:
        raise ValueError(f"{name} must be positive, got: {amount}")
    return amount


def validate_date(value: str, name: str) -> datetime:
    """Parse an ISO-8601 timestamp (a trailing ``Z`` is accepted)."""
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise ValueError(f'Invalid {name} date format: "{value}"')


def validate_option(value: T, options: Sequence[T], name: str) -> T:
    if value not in options:
        allowed = ", ".join(str(option) for option in options)
        raise ValueError(f'Invalid {name}: "{value}". Must be one of: {allowed}')
    return value
