"""Bridge payload construction (EVM source chain to Solana)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from kanz.config import KanzConfig
from kanz.core.errors import UnsupportedRoute, UpstreamFailure
from kanz.core.models import Execution
from kanz.core.quotes import LiFiClient
from kanz.core.tokens import encode_approve, is_zero_address
from kanz.core.utils import get_logger, to_hex_quantity, to_smallest_unit

LOGGER = get_logger("kanz.bridge")

SUPPORTED_PROVIDERS = ("lifi",)


@dataclass(frozen=True)
class ApprovalTransaction:
    """Standalone ERC-20 approval the user must send before the bridge call."""

    to: str
    data: str
    value: str = "0x0"


@dataclass(frozen=True)
class BridgePayload:
    """Transaction the user signs on the source chain."""

    to: str
    data: str
    value: str
    gas_limit: Optional[str] = None
    approval: Optional[ApprovalTransaction] = None
    from_amount: int = 0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"to": self.to, "data": self.data, "value": self.value}
        if self.gas_limit is not None:
            payload["gasLimit"] = self.gas_limit
        if self.approval is not None:
            payload["approval_to"] = self.approval.to
            payload["approval_data"] = self.approval.data
            payload["approval_value"] = self.approval.value
        return payload


def check_bridge_route(config: KanzConfig, source_chain: str, bridge_provider: Optional[str] = None) -> None:
    """Fail fast for routes with no live aggregator behind them."""
    if bridge_provider and bridge_provider not in SUPPORTED_PROVIDERS:
        raise UnsupportedRoute(
            "Only bridge_provider=lifi is supported",
            details={"bridge_provider": bridge_provider},
        )
    if source_chain not in config.bridge.lifi_source_chains:
        raise UnsupportedRoute(
            f"Bridge payload not supported for source_chain={source_chain}",
            details={"source_chain": source_chain, "supported": list(config.bridge.lifi_source_chains)},
        )


def lifi_quote_params(config: KanzConfig, execution: Execution, from_amount: int) -> Dict[str, Any]:
    return {
        "fromChain": str(config.chain(execution.source_chain).chain_id),
        "toChain": str(config.solana.lifi_chain_id),
        "fromToken": config.tokens.base_usdc,
        "toToken": config.tokens.solana_usdc,
        "fromAddress": execution.evm_address,
        "toAddress": execution.solana_address,
        "fromAmount": str(from_amount),
        "slippage": str(config.defaults.bridge_slippage),
        "integrator": config.defaults.integrator,
    }


def _approval_for(step: Mapping[str, Any], fallback_amount: int) -> Optional[ApprovalTransaction]:
    estimate = step.get("estimate") or {}
    action = step.get("action") or {}
    approval_address = estimate.get("approvalAddress")
    from_token = (action.get("fromToken") or {}).get("address")
    if not approval_address or not from_token or is_zero_address(from_token):
        return None
    amount = int(action.get("fromAmount") or fallback_amount)
    # Must be its own transaction from the user; the allowance owner has to be
    # the user, never a multicall forwarder.
    return ApprovalTransaction(to=from_token, data=encode_approve(approval_address, amount))


def build_bridge_payload(
    *,
    config: KanzConfig,
    execution: Execution,
    lifi: LiFiClient,
    bridge_provider: Optional[str] = None,
) -> BridgePayload:
    """Quote the bridge leg and turn the route into an executable payload."""
    check_bridge_route(config, execution.source_chain, bridge_provider)

    from_amount = to_smallest_unit(execution.amount_usdc, config.defaults.usdc_decimals)
    step = lifi.quote(lifi_quote_params(config, execution, from_amount))

    if not (step.get("transactionRequest") or {}).get("data"):
        LOGGER.info("Quote for %s has no transaction data; materializing step", execution.id)
        step = lifi.step_transaction(step)

    tx = step.get("transactionRequest") or {}
    if not tx.get("to") or not tx.get("data"):
        raise UpstreamFailure(
            "LiFi did not return transaction data",
            code="lifi_missing_transaction",
        )

    gas_limit = tx.get("gasLimit")
    payload = BridgePayload(
        to=str(tx["to"]),
        data=str(tx["data"]),
        value=to_hex_quantity(tx.get("value")),
        gas_limit=str(gas_limit) if gas_limit not in (None, "") else None,
        approval=_approval_for(step, from_amount),
        from_amount=from_amount,
    )

    LOGGER.info(
        "Prepared bridge payload execution=%s target=%s amount=%s approval=%s",
        execution.id,
        payload.to,
        from_amount,
        payload.approval is not None,
    )
    return payload


__all__ = [
    "ApprovalTransaction",
    "BridgePayload",
    "SUPPORTED_PROVIDERS",
    "build_bridge_payload",
    "check_bridge_route",
    "lifi_quote_params",
]
