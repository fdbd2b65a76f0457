"""Config loader for the orchestrator."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional, Tuple

from web3 import Web3


class ConfigError(ValueError):
    """Raised when configuration data is invalid or missing."""


def _require_keys(data: Mapping[str, Any], keys: Iterable[str], context: str) -> None:
    missing = [key for key in keys if key not in data]
    if missing:
        raise ConfigError(f"{context} missing required keys: {', '.join(missing)}")


def _to_checksum(value: str, *, field_name: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except Exception as exc:  # web3 raises ValueError for malformed inputs
        raise ConfigError(f"Invalid address for {field_name}: {value}") from exc


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for an EVM source chain."""

    name: str
    chain_id: int
    rpc_url: Optional[str] = None

    def ensure_rpc_url(self) -> str:
        """Return the RPC URL or raise if it is missing."""
        if not self.rpc_url:
            raise ConfigError(f"RPC URL for {self.name} required but not configured")
        return self.rpc_url


@dataclass(frozen=True)
class SolanaConfig:
    """Identifiers for the Solana destination chain."""

    lifi_chain_id: int
    caip2: str


@dataclass(frozen=True)
class TokenAddresses:
    """Token contracts and mints on both legs."""

    base_usdc: str
    solana_usdc: str
    target_mint: str


@dataclass(frozen=True)
class DefaultsConfig:
    """Default operational parameters."""

    usdc_decimals: int
    bridge_slippage: float
    swap_slippage_bps: int
    api_timeout: int
    detail_max_chars: int
    integrator: str
    embedded_wallet_types: Tuple[str, ...]


@dataclass(frozen=True)
class BridgeRoutesConfig:
    """Which source chains are wired to a live bridge aggregator."""

    lifi_source_chains: Tuple[str, ...]


@dataclass(frozen=True)
class ApiUrlsConfig:
    """Endpoints of the external aggregators and custody provider."""

    lifi_quote: str
    lifi_step_transaction: str
    jupiter_quote: str
    jupiter_swap: str
    privy_api: str


@dataclass(frozen=True)
class SecretsConfig:
    """Credentials read from the environment, never from the JSON file."""

    privy_app_id: Optional[str] = None
    privy_app_secret: Optional[str] = None
    privy_verification_key: Optional[str] = None
    privy_authorization_key: Optional[str] = None
    jupiter_api_key: Optional[str] = None
    store_path: Optional[str] = None


@dataclass(frozen=True)
class KanzConfig:
    """Typed wrapper around the orchestrator configuration."""

    evm_chains: Dict[str, ChainConfig]
    solana: SolanaConfig
    tokens: TokenAddresses
    defaults: DefaultsConfig
    bridge: BridgeRoutesConfig
    api_urls: ApiUrlsConfig
    secrets: SecretsConfig

    @property
    def source_chains(self) -> Tuple[str, ...]:
        """Source chains an execution may be created for."""
        return tuple(self.evm_chains)

    def chain(self, name: str) -> ChainConfig:
        try:
            return self.evm_chains[name]
        except KeyError as exc:
            raise ConfigError(f"Unknown source chain: {name}") from exc


def _load_json(path: Path) -> MutableMapping[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file contains invalid JSON: {path}") from exc


def _env_value(env: Mapping[str, str], key: str) -> Optional[str]:
    value = (env.get(key) or "").strip()
    return value or None


def load_secrets(env: Optional[Mapping[str, str]] = None) -> SecretsConfig:
    """Read credentials from ``env`` (defaults to the process environment)."""
    env = os.environ if env is None else env
    return SecretsConfig(
        privy_app_id=_env_value(env, "PRIVY_APP_ID"),
        privy_app_secret=_env_value(env, "PRIVY_APP_SECRET"),
        # PEM keys are often stored with literal "\n" in .env files.
        privy_verification_key=(_env_value(env, "PRIVY_VERIFICATION_KEY") or "").replace("\\n", "\n") or None,
        privy_authorization_key=_env_value(env, "PRIVY_AUTHORIZATION_KEY"),
        jupiter_api_key=_env_value(env, "JUPITER_API_KEY"),
        store_path=_env_value(env, "KANZ_STORE_PATH"),
    )


def load_config(
    config_path: Optional[Path] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> KanzConfig:
    """Load and validate orchestrator configuration data."""
    env = os.environ if env is None else env
    config_path = config_path or Path(env.get("KANZ_CONFIG") or "config.json")
    data = _load_json(config_path)

    _require_keys(data, ["chains", "tokens", "defaults", "bridge", "api_urls"], "config")

    chains = data["chains"]
    tokens = data["tokens"]
    defaults = data["defaults"]
    bridge = data["bridge"]
    api_urls = data["api_urls"]

    _require_keys(chains, ["base", "solana"], "chains")
    evm_chains: Dict[str, ChainConfig] = {}
    for name, chain_data in chains.items():
        if name == "solana":
            continue
        _require_keys(chain_data, ["chain_id"], f"{name} chain")
        evm_chains[name] = ChainConfig(
            name=name,
            chain_id=int(chain_data["chain_id"]),
            rpc_url=chain_data.get("rpc_url"),
        )

    solana_data = chains["solana"]
    _require_keys(solana_data, ["lifi_chain_id", "caip2"], "solana chain")
    solana = SolanaConfig(lifi_chain_id=int(solana_data["lifi_chain_id"]), caip2=str(solana_data["caip2"]))

    _require_keys(tokens, ["base_usdc", "solana_usdc", "target_mint"], "tokens")
    token_addresses = TokenAddresses(
        base_usdc=_to_checksum(tokens["base_usdc"], field_name="base_usdc"),
        solana_usdc=str(tokens["solana_usdc"]),
        target_mint=str(tokens["target_mint"]),
    )

    _require_keys(
        defaults,
        [
            "usdc_decimals",
            "bridge_slippage",
            "swap_slippage_bps",
            "api_timeout",
            "detail_max_chars",
            "integrator",
        ],
        "defaults",
    )
    defaults_config = DefaultsConfig(
        usdc_decimals=int(defaults["usdc_decimals"]),
        bridge_slippage=float(defaults["bridge_slippage"]),
        swap_slippage_bps=int(defaults["swap_slippage_bps"]),
        api_timeout=int(defaults["api_timeout"]),
        detail_max_chars=int(defaults["detail_max_chars"]),
        integrator=str(defaults["integrator"]),
        embedded_wallet_types=tuple(defaults.get("embedded_wallet_types") or ("privy", "privy-v2")),
    )
    if defaults_config.usdc_decimals < 0:
        raise ConfigError("defaults.usdc_decimals must not be negative")
    if defaults_config.bridge_slippage <= 0 or defaults_config.bridge_slippage >= 1:
        raise ConfigError("defaults.bridge_slippage must be between 0 and 1")
    if defaults_config.swap_slippage_bps <= 0 or defaults_config.swap_slippage_bps >= 10_000:
        raise ConfigError("defaults.swap_slippage_bps must be between 0 and 10000")
    if defaults_config.api_timeout <= 0:
        raise ConfigError("defaults.api_timeout must be positive")
    if defaults_config.detail_max_chars <= 0:
        raise ConfigError("defaults.detail_max_chars must be positive")

    _require_keys(bridge, ["lifi_source_chains"], "bridge")
    routes = BridgeRoutesConfig(lifi_source_chains=tuple(str(c) for c in bridge["lifi_source_chains"]))
    unknown = [c for c in routes.lifi_source_chains if c not in evm_chains]
    if unknown:
        raise ConfigError(f"bridge.lifi_source_chains references unknown chains: {', '.join(unknown)}")

    _require_keys(
        api_urls,
        ["lifi_quote", "lifi_step_transaction", "jupiter_quote", "jupiter_swap", "privy_api"],
        "api_urls",
    )
    api_config = ApiUrlsConfig(
        lifi_quote=str(api_urls["lifi_quote"]),
        lifi_step_transaction=str(api_urls["lifi_step_transaction"]),
        jupiter_quote=str(api_urls["jupiter_quote"]),
        jupiter_swap=str(api_urls["jupiter_swap"]),
        privy_api=str(api_urls["privy_api"]).rstrip("/"),
    )

    return KanzConfig(
        evm_chains=evm_chains,
        solana=solana,
        tokens=token_addresses,
        defaults=defaults_config,
        bridge=routes,
        api_urls=api_config,
        secrets=load_secrets(env),
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
