"""
Autonomy Core: Self-Funding

Keeps the inference credit balance topped up by paying for credits in the
chain's native currency.

Purchase path:
1. Fetch a signed purchase intent (HTTP, retried)
2. Validate the intent deadline
3. Size the native value from the oracle price plus buffer
4. Safety gate (fee ceiling / balance incl. value)
5. Dry-run short-circuit
6. Retry-wrapped submit, wait for one confirmation
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from core.context import AutonomyContext
from core.exceptions import AutonomyError
from core.price import Number, to_decimal
from core.retry import with_retry
from core.safety import CommitContext, WEI_PER_ETHER
from core.validation import validate_amount, validate_date
from infra.contracts import COMMERCE_ABI, COMMERCE_POOL_FEE_TIER
from infra.ledger import ContractCall

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditBalance:
    total_credits: Decimal
    total_usage: Decimal
    available: Decimal
    low_balance: bool


@dataclass
class PurchaseResult:
    amount: Decimal
    value_wei: int = 0
    tx_hash: Optional[str] = None
    dry_run: bool = False
    skipped_reason: Optional[str] = None

    @property
    def purchased(self) -> bool:
        return self.tx_hash is not None


class CreditManager:
    def __init__(self, context: AutonomyContext):
        self.context = context

    def check_credits(self) -> CreditBalance:
        raw = self.context.credits.get_balance()
        total_credits = to_decimal(raw["total_credits"])
        total_usage = to_decimal(raw["total_usage"])
        available = total_credits - total_usage
        balance = CreditBalance(
            total_credits=total_credits,
            total_usage=total_usage,
            available=available,
            low_balance=available < self.context.config.autonomy.min_credits,
        )
        self.context.metrics.credits_checked(float(available))
        logger.info(f"Credits: ${available:.2f} available (${total_credits:.2f} total, ${total_usage:.2f} used)")
        return balance

    def purchase_credits(self, amount: Number, dry_run: bool = False,
                         known_balance: Optional[int] = None) -> PurchaseResult:
        """
        Buy ``amount`` USD of credits.

        Raises AutonomyError for gate rejections, expired or malformed intents
        and failed submits.
        """
        usd = validate_amount(amount, "amount")
        dry_run = dry_run or self.context.dry_run
        ledger = self.context.ledger
        result = PurchaseResult(amount=usd, dry_run=dry_run)

        sender = ledger.address
        available_wei = known_balance
        if available_wei is None:
            available_wei = self.context.call_with_retry(ledger.balance, "balance")
        logger.info(f"Purchasing ${usd} in credits from {sender} "
                    f"(balance {Decimal(available_wei) / WEI_PER_ETHER:f} ETH)")

        intent = self.context.credits.get_purchase_intent(float(usd), sender)

        try:
            deadline = validate_date(intent.deadline, "deadline")
        except ValueError as exc:
            raise AutonomyError.non_retryable(str(exc), cause=exc)
        if deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)
        if deadline <= datetime.now(timezone.utc):
            raise AutonomyError.non_retryable(
                f"Purchase intent expired at {intent.deadline}",
                details={"deadline": intent.deadline},
            )
        logger.info(f"Intent contract {intent.contract_address}, recipient {intent.recipient}, "
                    f"deadline {intent.deadline}")

        thresholds = self.context.gate.thresholds
        value_ether = self.context.price_cache.amount_for_target(usd, thresholds.min_funding_buffer_pct)
        value_wei = int(value_ether * WEI_PER_ETHER)
        result.value_wei = value_wei
        logger.info(f"Estimated value: {value_ether:f} ETH (includes {thresholds.min_funding_buffer_pct}% buffer)")

        call = ContractCall(
            intent.contract_address,
            COMMERCE_ABI,
            "swapAndTransferUniswapV3Native",
            (intent.as_call_tuple(int(deadline.timestamp())), COMMERCE_POOL_FEE_TIER),
        )
        commit = CommitContext(
            action="credit purchase",
            amount=usd,
            available_wei=available_wei,
            fee_price_wei=self.context.call_with_retry(ledger.fee_price, "fee price"),
            gas_estimate=self.context.call_with_retry(
                lambda: ledger.estimate_gas(call, value_wei), "estimate credit purchase"
            ),
            value_wei=value_wei,
        )
        decision = self.context.gate.check_before_commit(commit)
        if decision.skipped:
            result.skipped_reason = decision.reason
            return result
        decision.raise_for_rejection()

        if dry_run:
            logger.info(f"DRY RUN - would send {value_ether:f} ETH to {intent.contract_address}")
            return result

        receipt = with_retry(
            lambda: ledger.submit(call, value_wei),
            self.context.retry_policy,
            name="purchase credits",
            sleep=self.context.sleep,
        )
        result.tx_hash = receipt.tx_hash
        logger.info(f"Purchased ${usd} credits (tx {receipt.tx_hash})")
        self.context.metrics.credits_purchased(float(usd), receipt.tx_hash)
        return result
