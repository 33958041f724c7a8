"""Tests for credit balance checks and credit purchases."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
from requests.exceptions import ConnectionError

from core.exceptions import AutonomyError, ErrorClass
from core.self_funding import CreditManager
from infra.contracts import COMMERCE_POOL_FEE_TIER
from tests.helpers import COMMERCE_CONTRACT, ETHER, GWEI, WALLET, FakeLedger, make_context, make_intent


def _credits(total=20.0, usage=5.0, intent=None):
    credits = Mock()
    credits.get_balance.return_value = {"total_credits": total, "total_usage": usage}
    credits.get_purchase_intent.return_value = intent or make_intent()
    return credits


class TestCheckCredits:
    def test_available_is_credits_minus_usage(self):
        context = make_context(credits=_credits(total=20.5, usage=5.25))
        balance = CreditManager(context).check_credits()

        assert balance.available == Decimal("15.25")
        assert not balance.low_balance
        assert context.metrics.gauges()["credit_balance"] == pytest.approx(15.25)

    def test_low_balance_below_minimum(self):
        balance = CreditManager(make_context(credits=_credits(total=10, usage=6))).check_credits()
        assert balance.available == Decimal("4")
        assert balance.low_balance

    def test_service_errors_propagate(self):
        credits = _credits()
        credits.get_balance.side_effect = AutonomyError.recoverable("Server error 503")
        with pytest.raises(AutonomyError):
            CreditManager(make_context(credits=credits)).check_credits()


class TestPurchaseCredits:
    def test_purchase_sizes_value_from_oracle_price(self):
        ledger = FakeLedger()
        credits = _credits()
        context = make_context(ledger=ledger, credits=credits, price="3000")

        result = CreditManager(context).purchase_credits(10)

        # 10 USD * 1.2 / 3000 = 0.004 ETH
        assert result.value_wei == int(Decimal("0.004") * ETHER)
        assert result.purchased
        credits.get_purchase_intent.assert_called_once_with(10.0, WALLET)

        call, value = ledger.submitted[0]
        assert call.address == COMMERCE_CONTRACT
        assert call.function == "swapAndTransferUniswapV3Native"
        assert call.args[1] == COMMERCE_POOL_FEE_TIER
        assert value == result.value_wei
        assert context.metrics.counters()["credits_purchased"] == 1

    def test_intent_tuple_carries_unix_deadline(self):
        deadline = datetime(2099, 1, 1, tzinfo=timezone.utc)
        ledger = FakeLedger()
        context = make_context(ledger=ledger, credits=_credits(intent=make_intent(deadline)))

        CreditManager(context).purchase_credits(10)

        intent_tuple = ledger.submitted[0][0].args[0]
        assert intent_tuple[1] == int(deadline.timestamp())
        assert isinstance(intent_tuple[6], bytes)

    def test_dry_run_never_submits(self):
        ledger = FakeLedger()
        result = CreditManager(make_context(ledger=ledger)).purchase_credits(10, dry_run=True)

        assert result.dry_run
        assert not result.purchased
        assert result.value_wei > 0
        assert ledger.submitted == []

    def test_insufficient_balance_is_fatal_gate_rejection(self):
        ledger = FakeLedger(balance_wei=ETHER // 1000)

        with pytest.raises(AutonomyError) as exc_info:
            CreditManager(make_context(ledger=ledger)).purchase_credits(10)

        assert exc_info.value.kind is ErrorClass.FATAL
        assert exc_info.value.check == "balance"
        assert exc_info.value.details["shortfall_wei"] > 0
        assert ledger.submitted == []

    def test_transient_estimate_failure_is_retried(self):
        ledger = FakeLedger()
        ledger.estimate_gas = Mock(side_effect=[ConnectionError("rpc blip"), 150_000])

        result = CreditManager(make_context(ledger=ledger)).purchase_credits(10)

        assert result.purchased
        assert ledger.estimate_gas.call_count == 2
        assert len(ledger.submitted) == 1

    def test_known_balance_skips_balance_read(self):
        ledger = FakeLedger(balance_wei=0)
        result = CreditManager(make_context(ledger=ledger)).purchase_credits(10, known_balance=ETHER)
        assert result.purchased

    def test_high_gas_price_is_recoverable(self):
        ledger = FakeLedger(gas_price_wei=60 * GWEI)

        with pytest.raises(AutonomyError) as exc_info:
            CreditManager(make_context(ledger=ledger)).purchase_credits(10)

        assert exc_info.value.kind is ErrorClass.RECOVERABLE
        assert ledger.submitted == []

    def test_expired_intent_rejected(self):
        expired = make_intent(datetime.now(timezone.utc) - timedelta(minutes=5))
        ledger = FakeLedger()

        with pytest.raises(AutonomyError) as exc_info:
            CreditManager(make_context(ledger=ledger, credits=_credits(intent=expired))).purchase_credits(10)

        assert exc_info.value.kind is ErrorClass.NON_RETRYABLE
        assert ledger.submitted == []

    def test_stale_price_blocks_purchase(self):
        from tests.helpers import make_round

        ledger = FakeLedger(oracle=make_round("3000", age_seconds=7200))

        with pytest.raises(AutonomyError) as exc_info:
            CreditManager(make_context(ledger=ledger)).purchase_credits(10)

        assert exc_info.value.kind is ErrorClass.RECOVERABLE
        assert ledger.submitted == []

    @pytest.mark.parametrize("amount", [0, -5, "abc"])
    def test_invalid_amount(self, amount):
        with pytest.raises(ValueError):
            CreditManager(make_context()).purchase_credits(amount)
