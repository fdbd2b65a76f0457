"""Input validation for execution requests."""

from __future__ import annotations

from typing import Any, Collection, Optional

from kanz.core.errors import InvalidInput
from kanz.core.utils import parse_decimal, to_smallest_unit

DEFAULT_SOURCE_CHAIN = "base"


def validate_amount(value: Any, *, decimals: int) -> str:
    """Return ``value`` in plain decimal notation if it is a positive amount.

    The amount must also be at least one smallest unit and fit a uint256
    once scaled by ``10**decimals``.
    """
    text = "" if value is None else str(value).strip()
    if not text:
        raise InvalidInput("Invalid amount_usdc", field="amount_usdc")
    try:
        amount = parse_decimal(text)
    except ValueError as exc:
        raise InvalidInput("Invalid amount_usdc", field="amount_usdc") from exc
    if amount <= 0:
        raise InvalidInput("Invalid amount_usdc", field="amount_usdc")
    try:
        smallest = to_smallest_unit(amount, decimals)
    except ValueError as exc:
        raise InvalidInput("amount_usdc out of range", field="amount_usdc") from exc
    if smallest == 0:
        raise InvalidInput("amount_usdc below the smallest unit", field="amount_usdc")
    return format(amount, "f")


def validate_source_chain(value: Optional[str], supported: Collection[str]) -> str:
    chain = (value or DEFAULT_SOURCE_CHAIN).strip().lower()
    if chain not in supported:
        raise InvalidInput(
            "Invalid source_chain",
            field="source_chain",
            details={"supported": sorted(supported)},
        )
    return chain


def validate_tx_hash(value: Any, *, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"Missing or invalid {field}", field=field)
    return value.strip()


def validate_text(value: Any, *, field: str, max_length: int = 500) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"Missing or invalid {field}", field=field)
    return value.strip()[:max_length]


__all__ = [
    "DEFAULT_SOURCE_CHAIN",
    "validate_amount",
    "validate_source_chain",
    "validate_text",
    "validate_tx_hash",
]
