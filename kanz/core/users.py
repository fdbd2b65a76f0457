"""Wallet sync for users authenticated through the identity provider."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Collection, Dict, Iterable, List, Mapping, Sequence, Tuple

from kanz.core.models import SyncedUser, SyncedWallet
from kanz.core.utils import get_logger

if TYPE_CHECKING:
    from kanz.core.store import ExecutionStore

LOGGER = get_logger("kanz.users")

DEFAULT_EMBEDDED_WALLET_TYPES = ("privy", "privy-v2")


def classify_linked_accounts(
    linked_accounts: Iterable[Mapping[str, Any]],
    embedded_wallet_types: Collection[str] = DEFAULT_EMBEDDED_WALLET_TYPES,
) -> List[SyncedWallet]:
    """Turn linked-account descriptors into wallets, dropping incomplete ones."""
    wallets: List[SyncedWallet] = []
    for account in linked_accounts:
        if not isinstance(account, Mapping):
            continue
        chain_type = account.get("chainType")
        address = account.get("address")
        if not chain_type or not address:
            continue
        wallets.append(
            SyncedWallet(
                chain_type=str(chain_type),
                address=str(address),
                is_embedded=account.get("walletClientType") in embedded_wallet_types,
            )
        )
    return wallets


def merge_wallets(existing: Sequence[SyncedWallet], incoming: Sequence[SyncedWallet]) -> Tuple[SyncedWallet, ...]:
    """Union keyed on ``(chain_type, address)``; the incoming record wins per key."""
    by_key: Dict[Tuple[str, str], SyncedWallet] = {}
    for wallet in existing:
        by_key[wallet.key] = wallet
    for wallet in incoming:
        by_key[wallet.key] = wallet
    return tuple(by_key.values())


def sync_user(
    store: "ExecutionStore",
    user_id: str,
    linked_accounts: Iterable[Mapping[str, Any]],
    *,
    embedded_wallet_types: Collection[str] = DEFAULT_EMBEDDED_WALLET_TYPES,
) -> SyncedUser:
    """Merge the caller's linked accounts into their stored wallet set."""
    wallets = classify_linked_accounts(linked_accounts, embedded_wallet_types)
    user = store.upsert_wallets(user_id, wallets)
    LOGGER.info("Synced user %s (%s incoming, %s total wallets)", user_id, len(wallets), len(user.wallets))
    return user


__all__ = ["classify_linked_accounts", "merge_wallets", "sync_user"]
