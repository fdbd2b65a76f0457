"""Request and response bodies for the HTTP API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SyncRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    linkedAccounts: List[Dict[str, Any]] = Field(default_factory=list)


class WalletOut(BaseModel):
    chainType: str
    address: str
    isEmbedded: bool


class SyncResponse(BaseModel):
    user_id: str
    wallets: List[WalletOut]


class CreateExecutionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Validated by the service so errors name the offending field.
    amount_usdc: Any = None
    source_chain: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=128)


class CreateExecutionResponse(BaseModel):
    execution_id: str
    status: str
    is_duplicate: bool


class EvmTxRequest(BaseModel):
    evm_tx_hash: Any = None


class SwapTxRequest(BaseModel):
    swap_tx_hash: Any = None


class SwapTxResponse(BaseModel):
    swap_tx_hash: str


class FailureRequest(BaseModel):
    error_code: Any = None
    error_message: Optional[str] = None


class SignedSwapRequest(BaseModel):
    signature: Any = None
    serialized_tx: Optional[str] = None


__all__ = [
    "CreateExecutionRequest",
    "CreateExecutionResponse",
    "EvmTxRequest",
    "FailureRequest",
    "SignedSwapRequest",
    "SwapTxRequest",
    "SwapTxResponse",
    "SyncRequest",
    "SyncResponse",
    "WalletOut",
]
