"""CLI entrypoint for running the bridge leg of an execution from a local key.

Creates an execution through the orchestrator API, fetches its bridge
payload, signs and broadcasts the approval and bridge transactions on the
source chain, then reports the bridge hash back.
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests
from dotenv import load_dotenv
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound

from kanz.config import KanzConfig, load_config
from kanz.core.errors import KanzError
from kanz.core.quotes import request_json
from kanz.core.tokens import balance_of
from kanz.core.utils import ensure_web3_connected, get_logger, to_smallest_unit

LOGGER = get_logger("kanz.cli")

APPROVAL_POLL_INTERVAL_S = 1.0
APPROVAL_POLL_ATTEMPTS = 30
FALLBACK_GAS = 500_000


class OrchestratorClient:
    """Thin ``requests`` client over the orchestrator HTTP API."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        *,
        timeout: int = 20,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {access_token}"})

    def _call(self, method: str, path: str, *, code: str, **kwargs: Any) -> Dict[str, Any]:
        return request_json(
            self.session,
            method,
            f"{self.base_url}{path}",
            code=code,
            message=f"Orchestrator {method} {path} failed",
            timeout=self.timeout,
            detail_limit=500,
            **kwargs,
        )

    def sync(self, linked_accounts: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._call("POST", "/auth/sync", code="api_sync_failed", json={"linkedAccounts": linked_accounts})

    def create_execution(
        self,
        amount_usdc: str,
        source_chain: str,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"amount_usdc": amount_usdc, "source_chain": source_chain}
        if idempotency_key:
            body["idempotency_key"] = idempotency_key
        return self._call("POST", "/executions", code="api_create_failed", json=body)

    def get_execution(self, execution_id: str) -> Dict[str, Any]:
        return self._call("GET", f"/executions/{execution_id}", code="api_get_failed")

    def bridge_payload(self, execution_id: str) -> Dict[str, Any]:
        return self._call(
            "GET",
            f"/executions/{execution_id}/bridge-payload",
            code="api_bridge_payload_failed",
            params={"bridge_provider": "lifi"},
        )

    def report_evm_tx(self, execution_id: str, evm_tx_hash: str) -> Dict[str, Any]:
        return self._call(
            "PATCH",
            f"/executions/{execution_id}/evm-tx",
            code="api_report_evm_tx_failed",
            json={"evm_tx_hash": evm_tx_hash},
        )


@dataclass(frozen=True)
class BridgeLegPlan:
    """An execution plus the transactions that move its funds off the source chain."""

    execution_id: str
    amount_usdc: str
    from_amount: int
    payload: Dict[str, Any]

    @property
    def has_approval(self) -> bool:
        return bool(self.payload.get("approval_to") and self.payload.get("approval_data"))


@dataclass(frozen=True)
class FeeParameters:
    """EIP-1559 fee caps."""

    max_priority_fee: int
    max_fee: int


class BridgeLegExecutor:
    """Runs the source-chain half of an execution with a local signer."""

    def __init__(
        self,
        *,
        client: OrchestratorClient,
        private_key: str,
        source_chain: str = "base",
        rpc_url: Optional[str] = None,
        solana_address: Optional[str] = None,
        config: Optional[KanzConfig] = None,
        web3_factory: Callable[[str], Web3] = lambda url: Web3(Web3.HTTPProvider(url)),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or load_config()
        self.client = client
        self.source_chain = source_chain
        self.solana_address = solana_address
        self.sleep = sleep

        chain = self.config.chain(source_chain)
        self.chain_id = chain.chain_id
        self.web3 = web3_factory(rpc_url or chain.ensure_rpc_url())
        ensure_web3_connected(self.web3, expected_chain_id=self.chain_id)

        self.account = Account.from_key(private_key)
        self.address = self.account.address
        LOGGER.info("Connected to chain %s as %s", self.chain_id, self.address)

    def sync_wallets(self) -> None:
        """Best-effort wallet sync; a failure is logged and creation is attempted anyway."""
        linked: List[Dict[str, Any]] = [{"type": "wallet", "chainType": "ethereum", "address": self.address}]
        if self.solana_address:
            linked.append({"type": "wallet", "chainType": "solana", "address": self.solana_address})
        try:
            result = self.client.sync(linked)
        except KanzError as exc:
            LOGGER.warning("Wallet sync failed, continuing: %s", exc)
            return
        LOGGER.info("Synced %s wallets for %s", len(result.get("wallets") or []), result.get("user_id"))

    def prepare_plan(self, amount_usdc: str, *, idempotency_key: Optional[str] = None) -> BridgeLegPlan:
        self.sync_wallets()
        created = self.client.create_execution(amount_usdc, self.source_chain, idempotency_key)
        execution_id = str(created["execution_id"])
        if created.get("is_duplicate"):
            LOGGER.info("Reusing execution %s (status=%s)", execution_id, created.get("status"))
        else:
            LOGGER.info("Created execution %s", execution_id)

        payload = self.client.bridge_payload(execution_id)
        return BridgeLegPlan(
            execution_id=execution_id,
            amount_usdc=amount_usdc,
            from_amount=to_smallest_unit(amount_usdc, self.config.defaults.usdc_decimals),
            payload=payload,
        )

    def _check_balance(self, plan: BridgeLegPlan) -> None:
        if self.source_chain != "base":
            return
        balance = balance_of(self.web3, self.config.tokens.base_usdc, self.address)
        if balance < plan.from_amount:
            LOGGER.warning(
                "USDC balance %.6f below bridge amount %.6f",
                balance / 10**self.config.defaults.usdc_decimals,
                plan.from_amount / 10**self.config.defaults.usdc_decimals,
            )

    def _fees(self) -> FeeParameters:
        gas_price = self.web3.eth.gas_price
        max_priority_fee = getattr(self.web3.eth, "max_priority_fee", gas_price)
        return FeeParameters(max_priority_fee=max_priority_fee, max_fee=gas_price + max_priority_fee)

    def build_transaction(self, to: str, data: str, value: Any, gas_limit: Optional[str] = None) -> Dict[str, Any]:
        """Build a 1559 transaction from a payload's ``to``/``data``/``value``."""
        tx: Dict[str, Any] = {
            "from": self.address,
            "to": Web3.to_checksum_address(to),
            "data": data,
            "value": int(str(value or "0x0"), 16),
            "chainId": self.chain_id,
        }
        if gas_limit:
            tx["gas"] = int(str(gas_limit), 0)
        else:
            try:
                tx["gas"] = int(self.web3.eth.estimate_gas(tx) * 1.1)  # add a 10% buffer
            except (ContractLogicError, ValueError) as exc:
                LOGGER.warning("Gas estimation failed, using fallback %s: %s", FALLBACK_GAS, exc)
                tx["gas"] = FALLBACK_GAS
        fees = self._fees()
        tx["maxFeePerGas"] = fees.max_fee
        tx["maxPriorityFeePerGas"] = fees.max_priority_fee
        tx["nonce"] = self.web3.eth.get_transaction_count(self.address, "pending")
        return tx

    def _sign_and_send(self, tx: Dict[str, Any]) -> str:
        signed = self.account.sign_transaction(tx)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    def wait_for_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Poll for a receipt a bounded number of times; ``None`` if it never shows."""
        for attempt in range(1, APPROVAL_POLL_ATTEMPTS + 1):
            try:
                receipt = self.web3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                receipt = None
            if receipt is not None:
                if receipt["status"] != 1:
                    LOGGER.error("Transaction %s reverted (status=%s)", tx_hash, receipt["status"])
                return receipt
            if attempt < APPROVAL_POLL_ATTEMPTS:
                self.sleep(APPROVAL_POLL_INTERVAL_S)
        LOGGER.warning("No receipt for %s after %s attempts; proceeding", tx_hash, APPROVAL_POLL_ATTEMPTS)
        return None

    def execute_dry_run(self, amount_usdc: str, *, idempotency_key: Optional[str] = None) -> BridgeLegPlan:
        """Create the execution and show what would be sent, without signing."""
        plan = self.prepare_plan(amount_usdc, idempotency_key=idempotency_key)
        self._log_plan(plan)
        self._check_balance(plan)
        return plan

    def execute_send(self, amount_usdc: str, *, idempotency_key: Optional[str] = None) -> str:
        """Run the bridge leg end to end and return the reported bridge hash."""
        plan = self.prepare_plan(amount_usdc, idempotency_key=idempotency_key)
        self._log_plan(plan)
        self._check_balance(plan)
        payload = plan.payload

        if plan.has_approval:
            approval_tx = self.build_transaction(
                payload["approval_to"],
                payload["approval_data"],
                payload.get("approval_value"),
            )
            LOGGER.info("Sending approval to %s", payload["approval_to"])
            approval_hash = self._sign_and_send(approval_tx)
            LOGGER.info("Approval hash: %s", approval_hash)
            self.wait_for_receipt(approval_hash)

        bridge_tx = self.build_transaction(payload["to"], payload["data"], payload.get("value"), payload.get("gasLimit"))
        LOGGER.info("Sending bridge transaction to %s", payload["to"])
        bridge_hash = self._sign_and_send(bridge_tx)
        LOGGER.info("Bridge hash: %s", bridge_hash)

        result = self.client.report_evm_tx(plan.execution_id, bridge_hash)
        LOGGER.info("Execution %s is now %s", plan.execution_id, result.get("status"))
        return bridge_hash

    def _log_plan(self, plan: BridgeLegPlan) -> None:
        LOGGER.info(
            "Execution %s: %s USDC (%s units) from %s",
            plan.execution_id,
            plan.amount_usdc,
            plan.from_amount,
            self.source_chain,
        )
        LOGGER.info(
            "Bridge target: %s value=%s gasLimit=%s",
            plan.payload.get("to"),
            plan.payload.get("value"),
            plan.payload.get("gasLimit"),
        )
        if plan.has_approval:
            LOGGER.info("Approval required on token %s", plan.payload.get("approval_to"))


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the EVM bridge leg of a bridge-then-swap execution")
    parser.add_argument("--amount", required=True, help="USDC amount, e.g. 12.5")
    parser.add_argument("--source-chain", default="base")
    parser.add_argument("--idempotency-key", default=None)
    parser.add_argument("--solana-address", default=os.getenv("SOLANA_ADDRESS"))
    parser.add_argument("--api-url", default=os.getenv("KANZ_API_URL", "http://127.0.0.1:8000"))
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--dry-run", action="store_true", help="Create the execution and fetch the payload only")
    group.add_argument("--send", action="store_true", help="Sign, broadcast and report the bridge transactions")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = _parse_args(argv)

    private_key = (os.getenv("PRIVATE_KEY") or "").strip()
    access_token = (os.getenv("KANZ_ACCESS_TOKEN") or "").strip()
    rpc_url = (os.getenv("RPC_URL") or "").strip() or None

    if not private_key:
        print("Error: PRIVATE_KEY environment variable not set")
        sys.exit(1)
    if not access_token:
        print("Error: KANZ_ACCESS_TOKEN environment variable not set")
        sys.exit(1)

    try:
        executor = BridgeLegExecutor(
            client=OrchestratorClient(args.api_url, access_token),
            private_key=private_key,
            source_chain=args.source_chain,
            rpc_url=rpc_url,
            solana_address=args.solana_address,
        )
        if args.dry_run:
            executor.execute_dry_run(args.amount, idempotency_key=args.idempotency_key)
        else:
            executor.execute_send(args.amount, idempotency_key=args.idempotency_key)
    except Exception as exc:
        print(f"\nError: {exc}")
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    main()
