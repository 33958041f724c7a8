"""Tests for input validation helpers and task parameter schemas."""

from datetime import timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from core.schemas import (
    BalanceParams,
    TaskRequest,
    TradeParams,
    TransferParams,
    safe_validate_task_params,
    validate_task_params,
)
from core.validation import require_env, validate_address, validate_amount, validate_date, validate_option
from tests.helpers import WALLET


class TestValidateAddress:
    def test_returns_checksummed(self):
        lower = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
        assert validate_address(lower, "token") == "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"

    @pytest.mark.parametrize("value", ["0x123", "833589fcd6edb6e08f4c7c32d4f71b54bda02913", "0xZZ" + "0" * 38])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="Invalid wallet"):
            validate_address(value, "wallet")

    def test_missing(self):
        with pytest.raises(ValueError, match="wallet is required"):
            validate_address("", "wallet")


class TestValidateAmount:
    def test_parses_strings_exactly(self):
        assert validate_amount("0.1", "amount") == Decimal("0.1")

    def test_float_goes_through_str(self):
        assert validate_amount(0.1, "amount") == Decimal("0.1")

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity"])
    def test_not_a_number(self, value):
        with pytest.raises(ValueError, match="Must be a valid number"):
            validate_amount(value, "amount")

    @pytest.mark.parametrize("value", [0, "-1"])
    def test_must_be_positive(self, value):
        with pytest.raises(ValueError, match="must be positive"):
            validate_amount(value, "amount")

    def test_required(self):
        with pytest.raises(ValueError, match="amount is required"):
            validate_amount(None, "amount")


class TestOtherValidators:
    def test_date_with_trailing_z(self):
        parsed = validate_date("2026-03-01T12:00:00Z", "deadline")
        assert parsed.tzinfo is not None
        assert parsed.utcoffset() == timezone.utc.utcoffset(None)

    def test_bad_date(self):
        with pytest.raises(ValueError, match="Invalid deadline date format"):
            validate_date("tomorrow", "deadline")

    def test_option(self):
        assert validate_option("high", ["low", "normal", "high"], "priority") == "high"
        with pytest.raises(ValueError, match="Must be one of: low, normal, high"):
            validate_option("urgent", ["low", "normal", "high"], "priority")

    def test_require_env(self, monkeypatch):
        monkeypatch.setenv("SOME_KEY", "value")
        assert require_env("SOME_KEY") == "value"
        monkeypatch.delenv("SOME_KEY")
        with pytest.raises(ValueError, match="SOME_KEY"):
            require_env("SOME_KEY")


class TestTaskSchemas:
    def test_trade_params(self):
        params = validate_task_params("trade", {"action": "swap", "token": "ETH", "amount": "1.5"})
        assert isinstance(params, TradeParams)
        assert params.slippage is None

    def test_swap_shares_trade_schema(self):
        assert isinstance(validate_task_params("swap", {"action": "buy", "token": "USDC", "amount": "3"}), TradeParams)

    def test_trade_rejects_zero_amount(self):
        with pytest.raises(ValidationError, match="greater than 0"):
            TradeParams(action="quote", token="ETH", amount="0")

    def test_trade_rejects_extra_fields(self):
        with pytest.raises(ValidationError):
            TradeParams(action="quote", token="ETH", amount="1", memo="hi")

    def test_lowercase_symbol_rejected(self):
        result = safe_validate_task_params("trade", {"action": "quote", "token": "eth", "amount": "1"})
        assert not result["success"]
        assert result["error"].startswith("token:")

    def test_transfer_needs_address(self):
        with pytest.raises(ValidationError):
            TransferParams(action="transfer", token="ETH", amount="1", to="bob")
        assert TransferParams(action="transfer", token="ETH", amount="1", to=WALLET).to == WALLET

    def test_balance_fields_optional(self):
        assert BalanceParams(action="balance").token is None

    def test_unknown_skill_requires_object(self):
        assert validate_task_params("summarize", {"text": "x"}) == {"text": "x"}
        result = safe_validate_task_params("summarize", ["not", "an", "object"])
        assert result == {"success": False, "error": "Params must be an object"}

    def test_task_request_defaults(self):
        request = TaskRequest(skill="trade", agent_wallet=WALLET)
        assert request.priority == "normal"
        assert request.params == {}

    def test_task_request_rejects_bad_priority(self):
        with pytest.raises(ValidationError):
            TaskRequest(skill="trade", agent_wallet=WALLET, priority="urgent")
