"""
Pytest configuration and fixtures for orchestrator tests.

Upstream aggregators and the custody provider are replaced with in-memory
fakes; access tokens are real ES256 JWTs signed with a throwaway key.
"""

import base64
import json
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from kanz.config import load_config  # noqa: E402
from kanz.core.custody import AuthorizationKeySigner, CustodyWallet, PrivyWalletClient  # noqa: E402
from kanz.core.executions import ExecutionService  # noqa: E402
from kanz.core.models import Execution, ExecutionStatus  # noqa: E402
from kanz.core.store import InMemoryStore  # noqa: E402

CONFIG_PATH = PROJECT_ROOT / "config.json"

APP_ID = "app-test"
BASE_USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
LIFI_DIAMOND = "0x1231deb6f5749ef6ce6943a275a1d3e7486f4eae"
EVM_ADDRESS = "0x00000000000000000000000000000000000000aa"
SOLANA_ADDRESS = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"

TEST_ENV = {
    "PRIVY_APP_ID": APP_ID,
    "PRIVY_APP_SECRET": "app-secret",
    "JUPITER_API_KEY": "jup-key",
}


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line("markers", "api: exercises the HTTP surface")


def make_response(status: int = 200, payload: Any = None, text: str = "") -> MagicMock:
    """Build a stand-in for ``requests.Response``."""
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.text = text or (json.dumps(payload) if payload is not None else "")
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


def lifi_step(**overrides: Any) -> Dict[str, Any]:
    step = {
        "action": {"fromToken": {"address": BASE_USDC}, "fromAmount": "1234567"},
        "estimate": {"approvalAddress": LIFI_DIAMOND},
        "transactionRequest": {
            "to": LIFI_DIAMOND,
            "data": "0xabcdef",
            "value": "0",
            "gasLimit": "0x493e0",
        },
    }
    step.update(overrides)
    return step


class FakeLiFi:
    def __init__(self) -> None:
        self.quote_response: Dict[str, Any] = lifi_step()
        self.step_response: Optional[Dict[str, Any]] = None
        self.error: Optional[Exception] = None
        self.quote_calls: List[Dict[str, Any]] = []
        self.step_calls: List[Dict[str, Any]] = []

    def quote(self, params):
        self.quote_calls.append(dict(params))
        if self.error is not None:
            raise self.error
        return self.quote_response

    def step_transaction(self, step):
        self.step_calls.append(dict(step))
        return self.step_response or lifi_step()


class FakeJupiter:
    def __init__(self) -> None:
        self.is_configured = True
        self.swap_response: Dict[str, Any] = {"swapTransaction": "AQIDBA=="}
        self.quote_calls: List[Dict[str, Any]] = []
        self.build_calls: List[Dict[str, Any]] = []

    def quote(self, params):
        self.quote_calls.append(dict(params))
        return {"inAmount": params["amount"], "outAmount": "4200", "routePlan": []}

    def build_swap(self, body):
        self.build_calls.append(dict(body))
        return self.swap_response


def encode_authorization_key(key: ec.EllipticCurvePrivateKey) -> str:
    """Export ``key`` in the ``wallet-auth:`` PKCS8 form the custody provider uses."""
    der = key.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return "wallet-auth:" + base64.b64encode(der).decode("ascii")


class FakeCustody(PrivyWalletClient):
    """Privy client whose HTTP calls are answered from memory."""

    def __init__(self, config) -> None:
        super().__init__(config, session=MagicMock())
        self.wallets = [CustodyWallet(id="wallet-sol-1", address=SOLANA_ADDRESS, chain_type="solana")]
        self.sent: List[Any] = []
        self.user_key = ec.generate_private_key(ec.SECP256R1())
        self.user_jwts: List[str] = []

    def authenticate_user(self, user_jwt):
        self.user_jwts.append(user_jwt)
        return AuthorizationKeySigner(encode_authorization_key(self.user_key))

    def iter_wallets(self, user_id, chain_type=None):
        for wallet in self.wallets:
            if chain_type is None or wallet.chain_type == chain_type:
                yield wallet

    def sign_and_send(self, request, authorization_signature):
        self.sent.append((request, authorization_signature))
        return f"solsig{len(self.sent)}"


class TokenFactory:
    """Mints ES256 access tokens the way the identity provider does."""

    def __init__(self) -> None:
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.public_pem = (
            self.private_key.public_key()
            .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
            .decode("ascii")
        )

    @staticmethod
    def _b64(raw: bytes) -> str:
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    def mint(self, sub: str = "did:privy:alice", *, alg: str = "ES256", **claims: Any) -> str:
        body = {"iss": "privy.io", "aud": APP_ID, "sub": sub, "iat": int(time.time()), "exp": int(time.time()) + 3600}
        body.update(claims)
        header_b64 = self._b64(json.dumps({"alg": alg, "typ": "JWT"}).encode())
        payload_b64 = self._b64(json.dumps(body).encode())
        der = self.private_key.sign(f"{header_b64}.{payload_b64}".encode("ascii"), ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        signature = r.to_bytes(32, "big") + s.to_bytes(32, "big")
        return f"{header_b64}.{payload_b64}.{self._b64(signature)}"


@pytest.fixture
def config():
    return load_config(CONFIG_PATH, env=TEST_ENV)


@pytest.fixture
def lifi():
    return FakeLiFi()


@pytest.fixture
def jupiter():
    return FakeJupiter()


@pytest.fixture
def custody(config):
    return FakeCustody(config)


@pytest.fixture
def authorization_key():
    """A P-256 key in the ``wallet-auth:`` PKCS8 form the custody dashboard exports."""
    key = ec.generate_private_key(ec.SECP256R1())
    return key, encode_authorization_key(key)


@pytest.fixture
def signer(authorization_key):
    return AuthorizationKeySigner(authorization_key[1])


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def service(config, store, lifi, jupiter, custody, signer):
    counter = iter(range(1, 10_000))
    return ExecutionService(
        config=config,
        store=store,
        lifi=lifi,
        jupiter=jupiter,
        custody=custody,
        signer=signer,
        id_factory=lambda: f"exec-{next(counter)}",
    )


@pytest.fixture
def tokens():
    return TokenFactory()


@pytest.fixture
def linked_accounts():
    return [
        {"type": "wallet", "chainType": "ethereum", "address": EVM_ADDRESS, "walletClientType": "metamask"},
        {"type": "wallet", "chainType": "solana", "address": SOLANA_ADDRESS, "walletClientType": "privy"},
    ]


@pytest.fixture
def make_execution():
    def _make(**overrides: Any) -> Execution:
        fields: Dict[str, Any] = {
            "id": "exec-1",
            "user_id": "did:privy:alice",
            "amount_usdc": "1.2345675",
            "source_chain": "base",
            "evm_address": EVM_ADDRESS,
            "solana_address": SOLANA_ADDRESS,
            "created_at": "2026-01-01T00:00:00+00:00",
            "updated_at": "2026-01-01T00:00:00+00:00",
            "status": ExecutionStatus.PENDING,
        }
        fields.update(overrides)
        return Execution(**fields)

    return _make
