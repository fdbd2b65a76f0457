"""
tests/unit/test_api.py - HTTP surface over the execution service.
"""

import pytest
from fastapi.testclient import TestClient

from kanz.api.app import create_app
from kanz.core.auth import AuthGate, TokenVerifier
from kanz.core.errors import Unauthenticated, UpstreamFailure

pytestmark = pytest.mark.api

TOKENS = {"tok-alice": "did:privy:alice", "tok-bob": "did:privy:bob"}
ALICE = {"Authorization": "Bearer tok-alice"}
BOB = {"Authorization": "Bearer tok-bob"}


class _StubVerifier(TokenVerifier):
    def verify(self, token):
        try:
            return TOKENS[token]
        except KeyError:
            raise Unauthenticated("unknown token") from None


@pytest.fixture
def client(config, service):
    app = create_app(config, service=service, auth=AuthGate(_StubVerifier()))
    return TestClient(app)


@pytest.fixture
def synced(client, linked_accounts):
    resp = client.post("/auth/sync", json={"linkedAccounts": linked_accounts}, headers=ALICE)
    assert resp.status_code == 200
    return resp.json()


@pytest.fixture
def execution_id(client, synced):
    resp = client.post("/executions", json={"amount_usdc": "1.2345675", "source_chain": "base"}, headers=ALICE)
    assert resp.status_code == 200
    return resp.json()["execution_id"]


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["store"] == "InMemoryStore"
    assert body["auth_configured"] is True


class TestAuth:
    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer nope"}, {"Authorization": "Token tok-alice"}])
    def test_rejected(self, client, headers):
        resp = client.get("/executions/anything", headers=headers)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Not authenticated", "code": "unauthenticated"}

    def test_rejected_before_body_validation(self, client):
        resp = client.post("/executions", json={"amount_usdc": "0"})
        assert resp.status_code == 401


class TestSync:
    def test_returns_wallets(self, synced):
        assert synced["user_id"] == "did:privy:alice"
        assert {w["chainType"] for w in synced["wallets"]} == {"ethereum", "solana"}
        assert [w["isEmbedded"] for w in synced["wallets"] if w["chainType"] == "solana"] == [True]


class TestCreate:
    def test_created(self, client, synced):
        resp = client.post("/executions", json={"amount_usdc": "10"}, headers=ALICE)
        assert resp.json() == {"execution_id": "exec-1", "status": "PENDING", "is_duplicate": False}

    def test_numeric_amount_accepted(self, client, synced):
        resp = client.post("/executions", json={"amount_usdc": 2.5}, headers=ALICE)
        assert resp.status_code == 200

    def test_unsynced_user(self, client):
        resp = client.post("/executions", json={"amount_usdc": "10"}, headers=BOB)
        assert resp.status_code == 400
        assert resp.json()["code"] == "user_not_synced"

    def test_invalid_amount(self, client, synced):
        resp = client.post("/executions", json={"amount_usdc": "0"}, headers=ALICE)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid amount_usdc", "code": "invalid_input", "field": "amount_usdc"}

    def test_amount_beyond_uint256(self, client, synced):
        resp = client.post("/executions", json={"amount_usdc": "1" + "0" * 80}, headers=ALICE)
        assert resp.status_code == 400
        assert resp.json()["field"] == "amount_usdc"

    def test_duplicate(self, client, synced):
        body = {"amount_usdc": "10", "idempotency_key": "order-7"}
        first = client.post("/executions", json=body, headers=ALICE).json()
        again = client.post("/executions", json=body, headers=ALICE).json()
        assert again == {**first, "is_duplicate": True}

    def test_malformed_body(self, client, synced):
        resp = client.post(
            "/executions",
            content="not json",
            headers={**ALICE, "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_input"

    def test_idempotency_key_too_long(self, client, synced):
        resp = client.post("/executions", json={"amount_usdc": "1", "idempotency_key": "k" * 200}, headers=ALICE)
        assert resp.status_code == 400
        assert resp.json()["field"] == "idempotency_key"


class TestRead:
    def test_snapshot(self, client, execution_id):
        body = client.get(f"/executions/{execution_id}", headers=ALICE).json()
        assert body["id"] == execution_id
        assert body["status"] == "PENDING"
        assert body["evm_tx_hash"] is None
        assert body["amount_usdc"] == "1.2345675"

    def test_other_user(self, client, execution_id):
        resp = client.get(f"/executions/{execution_id}", headers=BOB)
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"


class TestBridgeLeg:
    def test_bridge_payload(self, client, execution_id):
        resp = client.get(f"/executions/{execution_id}/bridge-payload", params={"bridge_provider": "lifi"}, headers=ALICE)
        assert resp.status_code == 200
        body = resp.json()
        assert set(body) == {"to", "data", "value", "gasLimit", "approval_to", "approval_data", "approval_value"}

    def test_unsupported_provider(self, client, execution_id):
        resp = client.get(
            f"/executions/{execution_id}/bridge-payload",
            params={"bridge_provider": "cctp"},
            headers=ALICE,
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "unsupported_route"

    def test_monad_route(self, client, synced, lifi):
        created = client.post("/executions", json={"amount_usdc": "1", "source_chain": "monad"}, headers=ALICE).json()
        resp = client.get(f"/executions/{created['execution_id']}/bridge-payload", headers=ALICE)
        assert resp.status_code == 400
        assert resp.json()["code"] == "unsupported_route"
        assert lifi.quote_calls == []

    def test_upstream_failure(self, client, execution_id, lifi):
        lifi.error = UpstreamFailure("LiFi quote failed", code="lifi_quote_failed", detail="No available quotes")
        resp = client.get(f"/executions/{execution_id}/bridge-payload", headers=ALICE)
        assert resp.status_code == 502
        assert resp.json() == {"error": "LiFi quote failed", "code": "lifi_quote_failed", "detail": "No available quotes"}

    def test_report_evm_tx(self, client, execution_id):
        resp = client.patch(f"/executions/{execution_id}/evm-tx", json={"evm_tx_hash": "0xabc"}, headers=ALICE)
        assert resp.json() == {"ok": True, "status": "BRIDGED"}

    def test_report_evm_tx_missing_hash(self, client, execution_id):
        resp = client.patch(f"/executions/{execution_id}/evm-tx", json={}, headers=ALICE)
        assert resp.status_code == 400
        assert resp.json()["field"] == "evm_tx_hash"


class TestSwapLeg:
    def _bridge(self, client, execution_id):
        client.patch(f"/executions/{execution_id}/evm-tx", json={"evm_tx_hash": "0xabc"}, headers=ALICE)

    def test_swap_payload_requires_bridge(self, client, execution_id):
        resp = client.get(f"/executions/{execution_id}/swap-payload", headers=ALICE)
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "Execution must be bridged before swap payload",
            "code": "invalid_state",
            "status": "PENDING",
            "required": ["BRIDGED", "BRIDGING"],
        }

    def test_client_signed_swap(self, client, execution_id):
        self._bridge(client, execution_id)
        payload = client.get(f"/executions/{execution_id}/swap-payload", headers=ALICE).json()
        assert payload == {"serialized_tx": "AQIDBA=="}

        resp = client.post(f"/executions/{execution_id}/swap-tx", json={"swap_tx_hash": "5ig"}, headers=ALICE)
        assert resp.json() == {"swap_tx_hash": "5ig"}
        assert client.get(f"/executions/{execution_id}", headers=ALICE).json()["status"] == "COMPLETED"

    def test_server_signed_swap(self, client, execution_id, custody):
        self._bridge(client, execution_id)
        resp = client.post(f"/executions/{execution_id}/swap-sign-and-send", headers=ALICE)
        assert resp.status_code == 200
        assert resp.json() == {"swap_tx_hash": "solsig1"}
        assert custody.user_jwts == ["tok-alice"]

    def test_detached_signature_swap(self, client, execution_id, custody):
        self._bridge(client, execution_id)
        challenge = client.get(f"/executions/{execution_id}/swap-signature-payload", headers=ALICE).json()
        assert set(challenge) == {"payload", "serialized_tx"}

        resp = client.post(
            f"/executions/{execution_id}/swap-sign-and-send-with-signature",
            json={"signature": "client-sig", "serialized_tx": challenge["serialized_tx"]},
            headers=ALICE,
        )
        assert resp.json() == {"swap_tx_hash": "solsig1"}
        assert custody.sent[0][1] == "client-sig"

    def test_swap_reported_twice(self, client, execution_id):
        self._bridge(client, execution_id)
        client.post(f"/executions/{execution_id}/swap-tx", json={"swap_tx_hash": "5ig"}, headers=ALICE)
        resp = client.post(f"/executions/{execution_id}/swap-tx", json={"swap_tx_hash": "again"}, headers=ALICE)
        assert resp.status_code == 400
        assert resp.json()["status"] == "COMPLETED"


class TestFailure:
    def test_mark_failed(self, client, execution_id):
        resp = client.post(
            f"/executions/{execution_id}/fail",
            json={"error_code": "user_cancelled", "error_message": "closed the tab"},
            headers=ALICE,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "FAILED"
        assert body["error_code"] == "user_cancelled"
        assert body["error_message"] == "closed the tab"

    def test_other_user_cannot_fail(self, client, execution_id):
        resp = client.post(f"/executions/{execution_id}/fail", json={"error_code": "x"}, headers=BOB)
        assert resp.status_code == 404
