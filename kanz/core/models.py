"""Records persisted by the execution store."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple


class ExecutionStatus(str, Enum):
    PENDING = "PENDING"
    BRIDGING = "BRIDGING"
    BRIDGED = "BRIDGED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATUSES: FrozenSet[ExecutionStatus] = frozenset({ExecutionStatus.COMPLETED, ExecutionStatus.FAILED})

# The bridge leg is at least underway; a swap may be built and reported.
SWAPPABLE_STATUSES: FrozenSet[ExecutionStatus] = frozenset({ExecutionStatus.BRIDGED, ExecutionStatus.BRIDGING})


@dataclass(frozen=True)
class SyncedWallet:
    chain_type: str
    address: str
    is_embedded: bool

    @property
    def key(self) -> Tuple[str, str]:
        return (self.chain_type, self.address)

    def to_dict(self) -> Dict[str, Any]:
        return {"chainType": self.chain_type, "address": self.address, "isEmbedded": self.is_embedded}


@dataclass(frozen=True)
class SyncedUser:
    user_id: str
    wallets: Tuple[SyncedWallet, ...] = ()

    def first_wallet(self, chain_type: str) -> Optional[SyncedWallet]:
        for wallet in self.wallets:
            if wallet.chain_type == chain_type and wallet.address:
                return wallet
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "wallets": [w.to_dict() for w in self.wallets]}


@dataclass(frozen=True)
class Execution:
    """One bridge-then-swap attempt, tracked end to end."""

    id: str
    user_id: str
    amount_usdc: str
    source_chain: str
    evm_address: str
    solana_address: str
    created_at: str
    updated_at: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    evm_tx_hash: Optional[str] = None
    bridge_message_id: Optional[str] = None
    swap_tx_hash: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    idempotency_key: Optional[str] = field(default=None, compare=False)

    def is_owned_by(self, user_id: str) -> bool:
        return self.user_id == user_id

    def to_snapshot(self) -> Dict[str, Any]:
        """Public view returned by the read contract."""
        return {
            "id": self.id,
            "status": self.status.value,
            "evm_tx_hash": self.evm_tx_hash,
            "bridge_message_id": self.bridge_message_id,
            "swap_tx_hash": self.swap_tx_hash,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "amount_usdc": self.amount_usdc,
            "source_chain": self.source_chain,
            "evm_address": self.evm_address,
            "solana_address": self.solana_address,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


__all__ = [
    "Execution",
    "ExecutionStatus",
    "SWAPPABLE_STATUSES",
    "SyncedUser",
    "SyncedWallet",
    "TERMINAL_STATUSES",
]
