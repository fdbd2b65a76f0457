"""Configuration utilities for the orchestrator."""

from .loader import (
    ApiUrlsConfig,
    BridgeRoutesConfig,
    ChainConfig,
    ConfigError,
    DefaultsConfig,
    KanzConfig,
    SecretsConfig,
    SolanaConfig,
    TokenAddresses,
    load_config,
    load_secrets,
)

__all__ = [
    "ApiUrlsConfig",
    "BridgeRoutesConfig",
    "ChainConfig",
    "ConfigError",
    "DefaultsConfig",
    "KanzConfig",
    "SecretsConfig",
    "SolanaConfig",
    "TokenAddresses",
    "load_config",
    "load_secrets",
]
