"""Bearer-token auth gate.

Tokens are Privy access tokens: ES256-signed JWTs issued by ``privy.io``
with the app id as audience. Verification runs against the app's public
verification key, so no network round-trip is needed per request.
"""

from __future__ import annotations

import abc
import base64
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from kanz.core.errors import NotConfigured, Unauthenticated
from kanz.core.utils import get_logger

LOGGER = get_logger("kanz.auth")

PRIVY_ISSUER = "privy.io"


def _b64url_decode(txt: str) -> bytes:
    pad = "=" * (-len(txt) % 4)
    return base64.urlsafe_b64decode((txt + pad).encode("utf-8"))


def bearer_token(auth_header: Optional[str]) -> Optional[str]:
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip() or None
    return None


class TokenVerifier(abc.ABC):
    """Capability: resolve a bearer token to a stable user id."""

    @abc.abstractmethod
    def verify(self, token: str) -> str:
        """Return the user id or raise ``Unauthenticated``."""


class PrivyTokenVerifier(TokenVerifier):
    def __init__(self, *, app_id: str, verification_key: str, leeway_s: int = 30) -> None:
        self.app_id = app_id
        self.leeway_s = leeway_s
        try:
            key = serialization.load_pem_public_key(verification_key.encode("utf-8"))
        except ValueError as exc:
            raise NotConfigured("Privy verification key is not a valid PEM public key") from exc
        if not isinstance(key, ec.EllipticCurvePublicKey):
            raise NotConfigured("Privy verification key must be an EC public key")
        self._public_key = key

    def _claims(self, token: str) -> Dict[str, Any]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
            header = json.loads(_b64url_decode(header_b64))
            claims = json.loads(_b64url_decode(payload_b64))
            signature = _b64url_decode(sig_b64)
        except (ValueError, UnicodeDecodeError) as exc:
            raise Unauthenticated("Malformed access token") from exc

        if not isinstance(header, dict) or header.get("alg") != "ES256" or len(signature) != 64:
            raise Unauthenticated("Unsupported token signature")

        # JWS carries raw r||s; cryptography expects DER.
        r = int.from_bytes(signature[:32], "big")
        s = int.from_bytes(signature[32:], "big")
        try:
            self._public_key.verify(
                encode_dss_signature(r, s),
                f"{header_b64}.{payload_b64}".encode("ascii"),
                ec.ECDSA(hashes.SHA256()),
            )
        except InvalidSignature as exc:
            raise Unauthenticated("Invalid token signature") from exc
        if not isinstance(claims, dict):
            raise Unauthenticated("Malformed access token")
        return claims

    def verify(self, token: str, *, now: Optional[int] = None) -> str:
        claims = self._claims(token)
        now_i = int(time.time()) if now is None else int(now)

        if claims.get("iss") != PRIVY_ISSUER:
            raise Unauthenticated("Unexpected token issuer")
        audience = claims.get("aud")
        audiences = audience if isinstance(audience, list) else [audience]
        if self.app_id not in audiences:
            raise Unauthenticated("Token issued for another app")
        try:
            exp = int(claims["exp"])
        except (KeyError, TypeError, ValueError) as exc:
            raise Unauthenticated("Token has no expiry") from exc
        if exp + self.leeway_s <= now_i:
            raise Unauthenticated("Token expired")

        user_id = str(claims.get("sub") or "")
        if not user_id:
            raise Unauthenticated("Token has no subject")
        return user_id


@dataclass(frozen=True)
class Identity:
    user_id: str
    token: str


class AuthGate:
    """First check of every core operation."""

    def __init__(self, verifier: Optional[TokenVerifier]) -> None:
        self.verifier = verifier

    def authenticate(self, auth_header: Optional[str]) -> Identity:
        token = bearer_token(auth_header)
        if not token:
            raise Unauthenticated()
        if self.verifier is None:
            LOGGER.warning("Rejecting request: no token verifier configured")
            raise Unauthenticated()
        try:
            user_id = self.verifier.verify(token)
        except Unauthenticated as exc:
            LOGGER.info("Token rejected: %s", exc.message)
            raise Unauthenticated() from exc
        return Identity(user_id=user_id, token=token)


__all__ = [
    "AuthGate",
    "Identity",
    "PRIVY_ISSUER",
    "PrivyTokenVerifier",
    "TokenVerifier",
    "bearer_token",
]
