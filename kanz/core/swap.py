"""Swap payload construction (bridged USDC to the target token on Solana)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from kanz.config import KanzConfig
from kanz.core.errors import InvalidState, NotConfigured, UpstreamFailure
from kanz.core.models import SWAPPABLE_STATUSES, Execution
from kanz.core.quotes import JupiterClient
from kanz.core.utils import get_logger, to_smallest_unit

LOGGER = get_logger("kanz.swap")


@dataclass(frozen=True)
class SwapPayload:
    """Base64 legacy transaction for the destination wallet to sign."""

    serialized_tx: str
    in_amount: int
    quote: Dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"serialized_tx": self.serialized_tx}


def require_swappable(execution: Execution) -> None:
    if execution.status not in SWAPPABLE_STATUSES:
        raise InvalidState(
            "Execution must be bridged before swap payload",
            status=execution.status.value,
            required={s.value for s in SWAPPABLE_STATUSES},
        )


def jupiter_quote_params(config: KanzConfig, amount: int) -> Dict[str, str]:
    return {
        "inputMint": config.tokens.solana_usdc,
        "outputMint": config.tokens.target_mint,
        "amount": str(amount),
        "slippageBps": str(config.defaults.swap_slippage_bps),
        "restrictIntermediateTokens": "true",
        "asLegacyTransaction": "true",
    }


def build_swap_payload(
    *,
    config: KanzConfig,
    execution: Execution,
    jupiter: JupiterClient,
) -> SwapPayload:
    """Quote the swap leg and have Jupiter build the transaction."""
    require_swappable(execution)
    if not jupiter.is_configured:
        raise NotConfigured("Jupiter API key not configured")

    amount = to_smallest_unit(execution.amount_usdc, config.defaults.usdc_decimals)
    quote = jupiter.quote(jupiter_quote_params(config, amount))
    swap = jupiter.build_swap(
        {
            "quoteResponse": quote,
            "userPublicKey": execution.solana_address,
            "dynamicComputeUnitLimit": True,
            "dynamicSlippage": True,
            "asLegacyTransaction": True,
        }
    )

    serialized = swap.get("swapTransaction")
    if not serialized:
        raise UpstreamFailure(
            "Jupiter did not return swap transaction",
            code="jupiter_missing_transaction",
        )

    LOGGER.info(
        "Prepared swap payload execution=%s amount=%s out=%s",
        execution.id,
        amount,
        quote.get("outAmount"),
    )
    return SwapPayload(serialized_tx=str(serialized), in_amount=amount, quote=quote)


__all__ = ["SwapPayload", "build_swap_payload", "jupiter_quote_params", "require_swappable"]
