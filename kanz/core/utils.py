"""Utility helpers shared across core modules."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext
from typing import Any, Optional

from web3 import Web3

UINT256_MAX = 2**256 - 1
UINT256_DIGITS = len(str(UINT256_MAX))


def get_logger(name: str = "kanz") -> logging.Logger:
    """Return a configured logger that prints to stdout."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


def ensure_web3_connected(web3: Web3, *, expected_chain_id: Optional[int] = None) -> None:
    """Validate that ``web3`` is connected and optionally matches the expected chain id."""
    if not web3.is_connected():
        raise ConnectionError("Failed to connect to the configured RPC endpoint")
    if expected_chain_id is not None and web3.eth.chain_id != expected_chain_id:
        raise ValueError(f"RPC chain ID mismatch: expected {expected_chain_id}, got {web3.eth.chain_id}")


def parse_decimal(value: Any) -> Decimal:
    """Parse a decimal amount, raising ``ValueError`` for anything non-finite."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a decimal amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    return amount


def to_smallest_unit(amount: Any, decimals: int) -> int:
    """Scale ``amount`` by ``10**decimals`` and truncate toward zero.

    Raises ``ValueError`` when the result does not fit a uint256.
    """
    value = parse_decimal(amount)
    if value and value.adjusted() + decimals > UINT256_DIGITS:
        raise ValueError(f"Amount out of range: {amount!r}")
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(value.as_tuple().digits) + 2)
        scaled = int(value.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))
    if not 0 <= scaled <= UINT256_MAX:
        raise ValueError(f"Amount out of range: {amount!r}")
    return scaled


def to_hex_quantity(value: Any) -> str:
    """Normalize an int, decimal string or hex string to a ``0x`` quantity."""
    if value is None or value == "":
        return "0x0"
    if isinstance(value, int):
        return hex(value)
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return hex(int(text, 16))
    return hex(int(text))


def truncate(text: Optional[str], limit: int) -> str:
    """Clip upstream diagnostic bodies before they reach a caller."""
    text = text or ""
    return text[:limit]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


__all__ = [
    "UINT256_MAX",
    "ensure_web3_connected",
    "get_logger",
    "parse_decimal",
    "to_hex_quantity",
    "to_smallest_unit",
    "truncate",
    "utc_now_iso",
]
