"""Tests for the credit service and quota gateway HTTP clients."""

import pytest
from unittest.mock import Mock

from core.exceptions import AutonomyError, ErrorClass
from core.retry import RetryPolicy
from infra.credits_api import CreditsClient, PurchaseIntent
from infra.gateway import GatewayClient
from tests.helpers import WALLET

FAST = RetryPolicy(max_retries=1, initial_delay=0.0)


def _response(status_code=200, payload=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = payload
    return response


def _intent_payload(**overrides):
    call_data = {
        "recipient_amount": "10000000",
        "deadline": "2030-01-01T00:00:00Z",
        "recipient": "0x4444444444444444444444444444444444444444",
        "recipient_currency": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "refund_destination": WALLET,
        "fee_amount": "100000",
        "id": "0x" + "ab" * 16,
        "operator": "0x5555555555555555555555555555555555555555",
        "signature": "0x" + "cd" * 65,
        "prefix": "0x" + "ef" * 4,
    }
    call_data.update(overrides)
    return {"data": {"web3_data": {"transfer_intent": {
        "metadata": {"contract_address": "0x3333333333333333333333333333333333333333"},
        "call_data": call_data,
    }}}}


def _client(*responses, api_key="sk-test"):
    session = Mock()
    session.request.side_effect = list(responses)
    return CreditsClient(api_key=api_key, base_url="https://credits.example/api/v1/",
                         policy=FAST, session=session)


class TestPurchaseIntent:
    def test_parses_nested_payload(self):
        intent = PurchaseIntent.from_response(_intent_payload())

        assert intent.recipient_amount == 10_000_000
        assert intent.fee_amount == 100_000
        assert intent.contract_address.startswith("0x3333")
        assert intent.deadline == "2030-01-01T00:00:00Z"

    def test_call_tuple_decodes_hex_fields(self):
        intent = PurchaseIntent.from_response(_intent_payload())
        struct = intent.as_call_tuple(1_893_456_000)

        assert len(struct) == 10
        assert struct[1] == 1_893_456_000
        assert struct[6] == bytes.fromhex("ab" * 16)
        assert struct[8] == bytes.fromhex("cd" * 65)
        assert struct[9] == bytes.fromhex("ef" * 4)

    def test_missing_key_is_non_retryable(self):
        payload = _intent_payload()
        del payload["data"]["web3_data"]["transfer_intent"]["call_data"]["signature"]

        with pytest.raises(AutonomyError) as exc_info:
            PurchaseIntent.from_response(payload)
        assert exc_info.value.kind is ErrorClass.NON_RETRYABLE

    def test_non_numeric_amount_is_non_retryable(self):
        with pytest.raises(AutonomyError, match="Malformed purchase intent"):
            PurchaseIntent.from_response(_intent_payload(recipient_amount="lots"))


class TestCreditsClient:
    def test_get_balance(self):
        client = _client(_response(payload={"data": {"total_credits": 20, "total_usage": "4.5"}}))

        assert client.get_balance() == {"total_credits": 20.0, "total_usage": 4.5}
        args, kwargs = client.session.request.call_args
        assert args == ("GET", "https://credits.example/api/v1/credits")
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"

    def test_missing_api_key_fails_before_request(self):
        client = _client(api_key="")
        with pytest.raises(AutonomyError, match="OPENROUTER_API_KEY not set"):
            client.get_balance()
        client.session.request.assert_not_called()

    def test_api_key_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-env")
        assert CreditsClient().api_key == "sk-env"

    def test_malformed_balance_is_non_retryable(self):
        client = _client(_response(payload={"data": {}}))
        with pytest.raises(AutonomyError) as exc_info:
            client.get_balance()
        assert exc_info.value.kind is ErrorClass.NON_RETRYABLE

    def test_server_error_is_retried(self):
        client = _client(
            _response(502, text="bad gateway"),
            _response(payload={"data": {"total_credits": 1, "total_usage": 0}}),
        )
        assert client.get_balance()["total_credits"] == 1.0
        assert client.session.request.call_count == 2

    def test_unauthorized_fails_fast(self):
        client = _client(_response(401, text="unauthorized"))
        with pytest.raises(AutonomyError, match="HTTP 401"):
            client.get_balance()
        assert client.session.request.call_count == 1

    def test_purchase_intent_request_body(self):
        client = _client(_response(payload=_intent_payload()))

        intent = client.get_purchase_intent(10.0, WALLET)

        assert intent.recipient_amount == 10_000_000
        _args, kwargs = client.session.request.call_args
        assert kwargs["json"] == {"amount": 10.0, "sender": WALLET, "chain_id": 8453}


class TestGatewayClient:
    def test_execute_skill_posts_params_with_wallet_header(self):
        session = Mock()
        session.request.return_value = _response(payload={"quote": "1.23"})
        gateway = GatewayClient(base_url="https://gw.example/", policy=FAST, session=session)

        assert gateway.execute_skill("trade", {"action": "quote"}, WALLET) == {"quote": "1.23"}

        args, kwargs = session.request.call_args
        assert args == ("POST", "https://gw.example/skill/trade")
        assert kwargs["headers"]["X-Wallet-Address"] == WALLET
        assert kwargs["json"] == {"action": "quote"}

    def test_unknown_skill_is_non_retryable(self):
        session = Mock()
        session.request.return_value = _response(404, text="no such skill")
        gateway = GatewayClient(base_url="https://gw.example", policy=FAST, session=session)

        with pytest.raises(AutonomyError) as exc_info:
            gateway.execute_skill("nope", {}, WALLET)
        assert exc_info.value.kind is ErrorClass.NON_RETRYABLE
        assert session.request.call_count == 1

    def test_gateway_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("UPSKILL_GATEWAY_URL", "https://env-gw.example/")
        assert GatewayClient().base_url == "https://env-gw.example"
