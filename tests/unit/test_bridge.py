"""
tests/unit/test_bridge.py - Li.Fi bridge payload construction.
"""

import pytest

from kanz.core.bridge import build_bridge_payload, check_bridge_route
from kanz.core.errors import UnsupportedRoute, UpstreamFailure
from kanz.core.tokens import APPROVE_SELECTOR, ZERO_ADDRESS

from conftest import BASE_USDC, EVM_ADDRESS, LIFI_DIAMOND, SOLANA_ADDRESS, lifi_step


class TestRoute:
    def test_base_with_default_provider(self, config):
        check_bridge_route(config, "base")
        check_bridge_route(config, "base", "lifi")

    def test_other_provider_rejected(self, config):
        with pytest.raises(UnsupportedRoute):
            check_bridge_route(config, "base", "wormhole")

    def test_monad_rejected_before_any_call(self, config, lifi, make_execution):
        with pytest.raises(UnsupportedRoute) as exc_info:
            build_bridge_payload(config=config, execution=make_execution(source_chain="monad"), lifi=lifi)
        assert exc_info.value.details["source_chain"] == "monad"
        assert lifi.quote_calls == []


class TestQuote:
    def test_quote_params(self, config, lifi, make_execution):
        build_bridge_payload(config=config, execution=make_execution(), lifi=lifi)
        assert lifi.quote_calls == [
            {
                "fromChain": "8453",
                "toChain": "1151111081099710",
                "fromToken": BASE_USDC,
                "toToken": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
                "fromAddress": EVM_ADDRESS,
                "toAddress": SOLANA_ADDRESS,
                "fromAmount": "1234567",
                "slippage": "0.005",
                "integrator": "kanz.finance",
            }
        ]

    def test_payload_fields(self, config, lifi, make_execution):
        payload = build_bridge_payload(config=config, execution=make_execution(), lifi=lifi)
        assert payload.to == LIFI_DIAMOND
        assert payload.data == "0xabcdef"
        assert payload.value == "0x0"
        assert payload.gas_limit == "0x493e0"
        assert payload.from_amount == 1234567
        assert lifi.step_calls == []

    def test_value_defaults_and_gas_limit_optional(self, config, lifi, make_execution):
        lifi.quote_response = lifi_step(transactionRequest={"to": LIFI_DIAMOND, "data": "0x01"})
        payload = build_bridge_payload(config=config, execution=make_execution(), lifi=lifi)
        assert payload.value == "0x0"
        assert "gasLimit" not in payload.to_dict()


class TestApproval:
    def test_separate_approval_on_token_contract(self, config, lifi, make_execution):
        payload = build_bridge_payload(config=config, execution=make_execution(), lifi=lifi)
        body = payload.to_dict()
        assert body["approval_to"] == BASE_USDC
        assert body["approval_value"] == "0x0"
        data = body["approval_data"]
        assert data.startswith(APPROVE_SELECTOR)
        assert data[10:74] == "0" * 24 + LIFI_DIAMOND[2:].lower()
        assert data[74:] == f"{1234567:064x}"
        # The bridge call itself is untouched.
        assert body["to"] == LIFI_DIAMOND

    def test_fallback_amount_when_action_has_none(self, config, lifi, make_execution):
        lifi.quote_response = lifi_step(action={"fromToken": {"address": BASE_USDC}})
        payload = build_bridge_payload(config=config, execution=make_execution(amount_usdc="2"), lifi=lifi)
        assert payload.approval.data.endswith(f"{2_000_000:064x}")

    def test_no_approval_without_spender(self, config, lifi, make_execution):
        lifi.quote_response = lifi_step(estimate={})
        payload = build_bridge_payload(config=config, execution=make_execution(), lifi=lifi)
        assert payload.approval is None
        assert "approval_to" not in payload.to_dict()

    def test_no_approval_for_native_token(self, config, lifi, make_execution):
        lifi.quote_response = lifi_step(action={"fromToken": {"address": ZERO_ADDRESS}, "fromAmount": "1"})
        payload = build_bridge_payload(config=config, execution=make_execution(), lifi=lifi)
        assert payload.approval is None


class TestMaterialization:
    def test_step_transaction_when_data_missing(self, config, lifi, make_execution):
        bare = lifi_step(transactionRequest={})
        lifi.quote_response = bare
        lifi.step_response = lifi_step(transactionRequest={"to": LIFI_DIAMOND, "data": "0xfeed", "value": "0x10"})
        payload = build_bridge_payload(config=config, execution=make_execution(), lifi=lifi)
        assert lifi.step_calls == [bare]
        assert payload.data == "0xfeed"
        assert payload.value == "0x10"

    def test_missing_transaction_after_materialization(self, config, lifi, make_execution):
        lifi.quote_response = lifi_step(transactionRequest={})
        lifi.step_response = lifi_step(transactionRequest={"data": "0xfeed"})
        with pytest.raises(UpstreamFailure) as exc_info:
            build_bridge_payload(config=config, execution=make_execution(), lifi=lifi)
        assert exc_info.value.code == "lifi_missing_transaction"
        assert exc_info.value.status_code == 502

    def test_quote_failure_propagates(self, config, lifi, make_execution):
        lifi.error = UpstreamFailure("LiFi quote failed", code="lifi_quote_failed", detail="boom")
        with pytest.raises(UpstreamFailure) as exc_info:
            build_bridge_payload(config=config, execution=make_execution(), lifi=lifi)
        assert exc_info.value.to_dict() == {"error": "LiFi quote failed", "code": "lifi_quote_failed", "detail": "boom"}
