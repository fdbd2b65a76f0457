"""Execution lifecycle: create, bridge, swap, complete.

States advance ``PENDING -> BRIDGED -> COMPLETED``; ``FAILED`` is reachable
from any non-terminal state by explicit report. ``BRIDGING`` is modelled and
accepted as swappable but nothing enters it yet: a reported EVM hash moves an
execution straight to ``BRIDGED`` without waiting for bridge settlement.
Nothing times executions out either.

Every transition reads the record, checks the event is allowed from its
current status (``InvalidState`` otherwise), then commits with a
compare-and-swap on that status (``Conflict`` if another writer got there
first).
"""

from __future__ import annotations

import hashlib
import hmac
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from kanz.config import KanzConfig
from kanz.core.bridge import BridgePayload, build_bridge_payload
from kanz.core.custody import AuthorizationKeySigner, PrivyWalletClient, SignatureRequest
from kanz.core.errors import Conflict, InvalidInput, InvalidState, NotFound, Unauthenticated
from kanz.core.models import SWAPPABLE_STATUSES, TERMINAL_STATUSES, Execution, ExecutionStatus, SyncedUser
from kanz.core.quotes import JupiterClient, LiFiClient
from kanz.core.store import ExecutionStore
from kanz.core.swap import SwapPayload, build_swap_payload, require_swappable
from kanz.core.users import sync_user
from kanz.core.utils import get_logger, utc_now_iso
from kanz.core.validation import validate_amount, validate_source_chain, validate_text, validate_tx_hash

LOGGER = get_logger("kanz.executions")

EVM_CHAIN_TYPE = "ethereum"
SOLANA_CHAIN_TYPE = "solana"


@dataclass(frozen=True)
class Transition:
    allowed_from: FrozenSet[ExecutionStatus]
    target: ExecutionStatus


NON_TERMINAL_STATUSES = frozenset(set(ExecutionStatus) - TERMINAL_STATUSES)

TRANSITIONS: Dict[str, Transition] = {
    "report_evm_tx": Transition(frozenset({ExecutionStatus.PENDING}), ExecutionStatus.BRIDGED),
    "report_swap_tx": Transition(SWAPPABLE_STATUSES, ExecutionStatus.COMPLETED),
    "report_failure": Transition(NON_TERMINAL_STATUSES, ExecutionStatus.FAILED),
}


@dataclass(frozen=True)
class CreateResult:
    execution: Execution
    is_duplicate: bool


@dataclass(frozen=True)
class SignatureChallenge:
    """What the client signs for the detached-signature swap mode."""

    request: SignatureRequest
    serialized_tx: str

    def to_dict(self) -> Dict[str, Any]:
        return {"payload": self.request.to_payload(), "serialized_tx": self.serialized_tx}


class ExecutionService:
    """Owns the execution state machine and the payload-building seams."""

    def __init__(
        self,
        *,
        config: KanzConfig,
        store: ExecutionStore,
        lifi: Optional[LiFiClient] = None,
        jupiter: Optional[JupiterClient] = None,
        custody: Optional[PrivyWalletClient] = None,
        signer: Optional[AuthorizationKeySigner] = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.config = config
        self.store = store
        self.lifi = lifi or LiFiClient(config)
        self.jupiter = jupiter or JupiterClient(config)
        self.custody = custody or PrivyWalletClient(config)
        self.signer = signer
        self.id_factory = id_factory
        self._challenges: Dict[str, str] = {}
        self._challenge_lock = threading.Lock()

    # -- users -----------------------------------------------------------

    def sync_user(self, user_id: str, linked_accounts: Iterable[Mapping[str, Any]]) -> SyncedUser:
        return sync_user(
            self.store,
            user_id,
            linked_accounts,
            embedded_wallet_types=self.config.defaults.embedded_wallet_types,
        )

    # -- lifecycle -------------------------------------------------------

    def create(
        self,
        user_id: str,
        *,
        amount_usdc: Any,
        source_chain: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CreateResult:
        """Create a ``PENDING`` execution for the caller's current wallets."""
        user = self.store.get_user(user_id)
        if user is None:
            raise InvalidInput("Sync wallets first (login and let auth/sync run)", code="user_not_synced")

        evm_wallet = user.first_wallet(EVM_CHAIN_TYPE)
        solana_wallet = user.first_wallet(SOLANA_CHAIN_TYPE)
        if evm_wallet is None:
            raise InvalidInput("missing_evm_wallet", field="evm_address", code="missing_evm_wallet")
        if solana_wallet is None:
            raise InvalidInput("missing_solana_wallet", field="solana_address", code="missing_solana_wallet")

        amount = validate_amount(amount_usdc, decimals=self.config.defaults.usdc_decimals)
        chain = validate_source_chain(source_chain, self.config.source_chains)

        now = utc_now_iso()
        candidate = Execution(
            id=self.id_factory(),
            user_id=user_id,
            amount_usdc=amount,
            source_chain=chain,
            evm_address=evm_wallet.address,
            solana_address=solana_wallet.address,
            created_at=now,
            updated_at=now,
            idempotency_key=(idempotency_key or "").strip() or None,
        )
        execution, created = self.store.insert_execution(candidate)
        if created:
            LOGGER.info(
                "Created execution %s user=%s amount=%s chain=%s",
                execution.id,
                user_id,
                amount,
                chain,
            )
        else:
            LOGGER.info("Idempotency key %s reused; returning execution %s", candidate.idempotency_key, execution.id)
        return CreateResult(execution=execution, is_duplicate=not created)

    def get(self, user_id: str, execution_id: str) -> Execution:
        """Return the caller's execution; someone else's is reported as absent."""
        execution = self.store.get_execution(execution_id)
        if execution is None or not execution.is_owned_by(user_id):
            raise NotFound()
        return execution

    def _apply(self, execution: Execution, event: str, **changes: Any) -> Execution:
        transition = TRANSITIONS[event]
        if execution.status not in transition.allowed_from:
            raise InvalidState(
                f"Cannot {event.replace('_', ' ')} while execution is {execution.status.value}",
                status=execution.status.value,
                required={s.value for s in transition.allowed_from},
            )
        updated = self.store.transition(
            execution.id,
            expected=execution.status,
            status=transition.target,
            **changes,
        )
        LOGGER.info(
            "Execution %s %s -> %s (%s)",
            execution.id,
            execution.status.value,
            updated.status.value,
            event,
        )
        return updated

    def report_evm_tx(self, user_id: str, execution_id: str, evm_tx_hash: Any) -> Execution:
        execution = self.get(user_id, execution_id)
        tx_hash = validate_tx_hash(evm_tx_hash, field="evm_tx_hash")
        return self._apply(execution, "report_evm_tx", evm_tx_hash=tx_hash)

    def report_swap_tx(self, user_id: str, execution_id: str, swap_tx_hash: Any) -> Execution:
        execution = self.get(user_id, execution_id)
        tx_hash = validate_tx_hash(swap_tx_hash, field="swap_tx_hash")
        return self._apply(execution, "report_swap_tx", swap_tx_hash=tx_hash)

    def report_failure(
        self,
        user_id: str,
        execution_id: str,
        error_code: Any,
        error_message: Optional[str] = None,
    ) -> Execution:
        execution = self.get(user_id, execution_id)
        code = validate_text(error_code, field="error_code", max_length=64)
        message = error_message.strip()[: self.config.defaults.detail_max_chars] if error_message else None
        return self._apply(execution, "report_failure", error_code=code, error_message=message)

    # -- payloads --------------------------------------------------------

    def bridge_payload(self, user_id: str, execution_id: str, bridge_provider: Optional[str] = None) -> BridgePayload:
        execution = self.get(user_id, execution_id)
        return build_bridge_payload(
            config=self.config,
            execution=execution,
            lifi=self.lifi,
            bridge_provider=bridge_provider,
        )

    def swap_payload(self, user_id: str, execution_id: str) -> SwapPayload:
        execution = self.get(user_id, execution_id)
        return build_swap_payload(config=self.config, execution=execution, jupiter=self.jupiter)

    # -- server-mediated swap ----------------------------------------------

    def _custody_request(self, execution: Execution, serialized_tx: Optional[str] = None) -> Tuple[SignatureRequest, str]:
        if serialized_tx is None:
            serialized_tx = build_swap_payload(
                config=self.config,
                execution=execution,
                jupiter=self.jupiter,
            ).serialized_tx
        wallet = self.custody.find_solana_wallet(execution.user_id, execution.solana_address)
        return self.custody.signature_request(wallet.id, serialized_tx), serialized_tx

    def _submit_swap(self, execution: Execution, request: SignatureRequest, signature: str) -> Execution:
        tx_hash = self.custody.sign_and_send(request, signature)
        try:
            return self._apply(execution, "report_swap_tx", swap_tx_hash=tx_hash)
        except (Conflict, InvalidState):
            LOGGER.error("Swap %s was submitted for execution %s but could not be recorded", tx_hash, execution.id)
            raise

    def swap_signature_challenge(self, user_id: str, execution_id: str) -> SignatureChallenge:
        """Build the wallet-RPC request the client authorizes with its own key."""
        execution = self.get(user_id, execution_id)
        require_swappable(execution)
        request, serialized_tx = self._custody_request(execution)
        with self._challenge_lock:
            self._challenges[execution.id] = _digest(serialized_tx)
        return SignatureChallenge(request=request, serialized_tx=serialized_tx)

    def sign_and_send_swap(self, user_id: str, execution_id: str, user_token: Optional[str]) -> Execution:
        """Delegated mode: the caller's access token authorizes the custody call.

        The token is exchanged for a short-lived user authorization key. When
        the app also holds an authorization key, its signature is sent alongside.
        """
        execution = self.get(user_id, execution_id)
        require_swappable(execution)
        if not user_token:
            raise Unauthenticated()
        request, _ = self._custody_request(execution)
        signatures = [self.custody.authenticate_user(user_token).sign(request)]
        if self.signer is not None:
            signatures.append(self.signer.sign(request))
        return self._submit_swap(execution, request, ",".join(signatures))

    def sign_and_send_swap_with_signature(
        self,
        user_id: str,
        execution_id: str,
        signature: Any,
        serialized_tx: Optional[str] = None,
    ) -> Execution:
        """Detached-signature mode: the client signed the challenge payload.

        An echoed ``serialized_tx`` must be the one last issued for this
        execution; without an echo the transaction is rebuilt.
        """
        execution = self.get(user_id, execution_id)
        auth_signature = validate_text(signature, field="signature", max_length=4096)
        require_swappable(execution)
        echoed = (serialized_tx or "").strip() or None
        if echoed is not None:
            with self._challenge_lock:
                issued = self._challenges.get(execution.id)
            if issued is None or not hmac.compare_digest(issued, _digest(echoed)):
                raise InvalidInput(
                    "serialized_tx does not match the issued signature payload",
                    field="serialized_tx",
                    code="challenge_mismatch",
                )
        request, _ = self._custody_request(execution, echoed)
        updated = self._submit_swap(execution, request, auth_signature)
        with self._challenge_lock:
            self._challenges.pop(execution.id, None)
        return updated


def _digest(serialized_tx: str) -> str:
    return hashlib.sha256(serialized_tx.encode("utf-8")).hexdigest()


__all__ = [
    "CreateResult",
    "ExecutionService",
    "NON_TERMINAL_STATUSES",
    "SignatureChallenge",
    "TRANSITIONS",
    "Transition",
]
