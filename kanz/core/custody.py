"""Privy wallet API adapter: wallet lookup and sign-and-send for Solana."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

import requests
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from kanz.config import KanzConfig
from kanz.core.errors import InvalidInput, NotConfigured, UpstreamFailure
from kanz.core.quotes import request_json
from kanz.core.utils import get_logger

LOGGER = get_logger("kanz.custody")

AUTHORIZATION_KEY_PREFIX = "wallet-auth:"


@dataclass(frozen=True)
class CustodyWallet:
    id: str
    address: str
    chain_type: str


@dataclass(frozen=True)
class SignatureRequest:
    """The exact request a wallet-RPC authorization signature covers."""

    url: str
    body: Dict[str, Any]
    app_id: str
    method: str = "POST"
    version: int = 1

    def to_payload(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "method": self.method,
            "url": self.url,
            "body": self.body,
            "headers": {"privy-app-id": self.app_id},
        }


def canonical_json(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class AuthorizationKeySigner:
    """Signs wallet-RPC requests with a P-256 authorization key."""

    def __init__(self, key: str) -> None:
        raw = key[len(AUTHORIZATION_KEY_PREFIX):] if key.startswith(AUTHORIZATION_KEY_PREFIX) else key
        try:
            private_key = serialization.load_der_private_key(base64.b64decode(raw), password=None)
        except ValueError as exc:
            raise NotConfigured("Privy authorization key is not a valid PKCS8 key") from exc
        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            raise NotConfigured("Privy authorization key must be a P-256 key")
        self._private_key = private_key

    def sign(self, request: SignatureRequest) -> str:
        signature = self._private_key.sign(canonical_json(request.to_payload()), ec.ECDSA(hashes.SHA256()))
        return base64.b64encode(signature).decode("ascii")


class PrivyWalletClient:
    def __init__(self, config: KanzConfig, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        secrets = self.config.secrets
        return bool(secrets.privy_app_id and secrets.privy_app_secret)

    @property
    def app_id(self) -> str:
        if not self.is_configured:
            raise NotConfigured("Privy app credentials not configured")
        return str(self.config.secrets.privy_app_id)

    def _call(
        self,
        method: str,
        url: str,
        *,
        code: str,
        message: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        all_headers = {"privy-app-id": self.app_id}
        all_headers.update(headers or {})
        return request_json(
            self.session,
            method,
            url,
            code=code,
            message=message,
            timeout=self.config.defaults.api_timeout,
            detail_limit=self.config.defaults.detail_max_chars,
            auth=(self.app_id, str(self.config.secrets.privy_app_secret)),
            headers=all_headers,
            **kwargs,
        )

    def iter_wallets(self, user_id: str, chain_type: Optional[str] = None) -> Iterator[CustodyWallet]:
        """Yield the user's custodial wallets, following pagination cursors."""
        params: Dict[str, Any] = {"user_id": user_id}
        if chain_type:
            params["chain_type"] = chain_type
        while True:
            page = self._call(
                "GET",
                f"{self.config.api_urls.privy_api}/v1/wallets",
                code="custody_list_wallets_failed",
                message="Privy wallet listing failed",
                params=dict(params),
            )
            for item in page.get("data") or []:
                yield CustodyWallet(
                    id=str(item.get("id")),
                    address=str(item.get("address") or ""),
                    chain_type=str(item.get("chain_type") or ""),
                )
            cursor = page.get("next_cursor")
            if not cursor:
                return
            params["cursor"] = cursor

    def list_wallets(self, user_id: str, chain_type: Optional[str] = None) -> List[CustodyWallet]:
        return list(self.iter_wallets(user_id, chain_type))

    def find_solana_wallet(self, user_id: str, address: str) -> CustodyWallet:
        for wallet in self.iter_wallets(user_id, "solana"):
            if wallet.chain_type == "solana" and wallet.address.lower() == address.lower():
                return wallet
        raise InvalidInput("Solana wallet not found for user", field="solana_address", code="wallet_not_found")

    def signature_request(self, wallet_id: str, serialized_tx: str) -> SignatureRequest:
        """Describe the ``signAndSendTransaction`` call for ``wallet_id``."""
        return SignatureRequest(
            url=f"{self.config.api_urls.privy_api}/v1/wallets/{wallet_id}/rpc",
            body={
                "method": "signAndSendTransaction",
                "chain_type": "solana",
                "caip2": self.config.solana.caip2,
                "params": {"transaction": serialized_tx, "encoding": "base64"},
            },
            app_id=self.app_id,
        )

    def authenticate_user(self, user_jwt: str) -> AuthorizationKeySigner:
        """Exchange a user access token for a short-lived wallet authorization key."""
        result = self._call(
            "POST",
            f"{self.config.api_urls.privy_api}/v1/wallets/authenticate",
            code="wallet_jwt_exchange_failed",
            message="Privy rejected the user token for wallet authorization",
            json={"user_jwt": user_jwt},
        )
        key = result.get("authorization_key")
        if not key:
            raise UpstreamFailure(
                "Privy did not return an authorization key",
                code="custody_missing_authorization_key",
            )
        LOGGER.info("Obtained user wallet authorization key (expires_at=%s)", result.get("expires_at"))
        try:
            return AuthorizationKeySigner(str(key))
        except NotConfigured as exc:
            raise UpstreamFailure(
                "Privy returned an unusable authorization key",
                code="custody_invalid_authorization_key",
            ) from exc

    def sign_and_send(self, request: SignatureRequest, authorization_signature: str) -> str:
        """Submit a signed wallet-RPC request and return the transaction hash."""
        result = self._call(
            request.method,
            request.url,
            code="custody_sign_and_send_failed",
            message="Privy sign-and-send failed",
            headers={"privy-authorization-signature": authorization_signature},
            json=request.body,
        )
        data = result.get("data") or {}
        tx_hash = data.get("hash") or data.get("transaction_id") or ""
        if not tx_hash:
            raise UpstreamFailure(
                "Privy did not return transaction hash",
                code="custody_missing_hash",
            )
        LOGGER.info("Custody submitted transaction %s via %s", tx_hash, request.url)
        return str(tx_hash)


__all__ = [
    "AUTHORIZATION_KEY_PREFIX",
    "AuthorizationKeySigner",
    "CustodyWallet",
    "PrivyWalletClient",
    "SignatureRequest",
    "canonical_json",
]
