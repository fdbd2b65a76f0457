"""Core domain logic for the orchestrator."""

from .bridge import BridgePayload, build_bridge_payload
from .executions import ExecutionService
from .quotes import JupiterClient, LiFiClient
from .store import ExecutionStore, InMemoryStore, SqliteStore, open_store
from .swap import SwapPayload, build_swap_payload
from .users import sync_user

__all__ = [
    "BridgePayload",
    "ExecutionService",
    "ExecutionStore",
    "InMemoryStore",
    "JupiterClient",
    "LiFiClient",
    "SqliteStore",
    "SwapPayload",
    "build_bridge_payload",
    "build_swap_payload",
    "open_store",
    "sync_user",
]
