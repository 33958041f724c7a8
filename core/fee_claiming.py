"""
Autonomy Core: Fee Claiming

Earned trading fees accumulate in the fee locker per (owner, token). This
module reads them (one batched round trip) and claims them back into the
agent's wallet.

Claim path per asset:
1. Read native balance, fee price and gas estimate
2. Safety gate (dead-zone / fee ceiling / balance)
3. Dry-run short-circuit
4. Retry-wrapped submit, wait for one confirmation
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from core.context import AutonomyContext
from core.retry import with_retry
from core.safety import CommitContext, WEI_PER_ETHER
from infra.contracts import FEE_LOCKER_ABI
from infra.ledger import ContractCall

logger = logging.getLogger(__name__)


def wei_to_ether(wei: int) -> Decimal:
    return Decimal(wei) / WEI_PER_ETHER


@dataclass(frozen=True)
class FeeInfo:
    """Claimable fees for one wallet/token pair (wei)."""
    wallet: str
    token: str
    weth_fees: int
    token_fees: int

    @property
    def weth_fees_ether(self) -> Decimal:
        return wei_to_ether(self.weth_fees)

    @property
    def token_fees_ether(self) -> Decimal:
        return wei_to_ether(self.token_fees)

    @property
    def has_claimable(self) -> bool:
        return self.weth_fees > 0 or self.token_fees > 0


@dataclass
class ClaimResult:
    token: str
    weth_claimed: int = 0
    token_claimed: int = 0
    weth_tx_hash: Optional[str] = None
    token_tx_hash: Optional[str] = None
    dry_run: bool = False
    skipped: List[str] = field(default_factory=list)

    @property
    def claimed_anything(self) -> bool:
        return self.weth_claimed > 0 or self.token_claimed > 0


class FeeClaimer:
    """Checks and claims fee-locker balances for the context's wallet."""

    def __init__(self, context: AutonomyContext):
        self.context = context
        self.chain = context.config.chain

    def _fees_call(self, wallet: str, asset: str) -> ContractCall:
        return ContractCall(self.chain.fee_locker, FEE_LOCKER_ABI, "feesToClaim", (wallet, asset))

    def _claim_call(self, wallet: str, asset: str) -> ContractCall:
        return ContractCall(self.chain.fee_locker, FEE_LOCKER_ABI, "claim", (wallet, asset))

    def check_fees(self, wallet: Optional[str] = None, token: Optional[str] = None) -> FeeInfo:
        ledger = self.context.ledger
        wallet = wallet or ledger.address
        token = token or self.context.token

        weth_fees, token_fees = with_retry(
            lambda: ledger.multi_read([
                self._fees_call(wallet, self.chain.weth),
                self._fees_call(wallet, token),
            ]),
            self.context.retry_policy,
            name="check fees",
            sleep=self.context.sleep,
        )
        info = FeeInfo(wallet=wallet, token=token, weth_fees=int(weth_fees), token_fees=int(token_fees))
        self.context.metrics.fee_checked(info.weth_fees, info.token_fees)
        logger.info(
            f"Fees for {wallet}: {info.weth_fees_ether:f} WETH, {info.token_fees_ether:f} tokens"
        )
        return info

    def claim_fees(self, token: Optional[str] = None, claim_both: bool = False,
                   dry_run: bool = False, fee_info: Optional[FeeInfo] = None,
                   min_amount: Optional[Decimal] = None) -> ClaimResult:
        """
        Claim WETH fees (and token fees when ``claim_both``).

        Raises AutonomyError when the safety gate rejects a claim or the
        submit fails; a dead-zone skip is recorded in ``result.skipped``.
        """
        ledger = self.context.ledger
        token = token or self.context.token
        dry_run = dry_run or self.context.dry_run
        info = fee_info or self.check_fees(ledger.address, token)

        result = ClaimResult(token=token, dry_run=dry_run)
        if not info.has_claimable:
            logger.info("No fees to claim")
            return result

        assets = [("WETH", self.chain.weth, info.weth_fees)]
        if claim_both:
            assets.append(("token", token, info.token_fees))

        for label, asset, amount_wei in assets:
            if amount_wei <= 0:
                continue
            tx_hash = self._claim_one(label, asset, amount_wei, dry_run, min_amount)
            if tx_hash is None:
                if not dry_run:
                    result.skipped.append(label)
                continue
            if label == "WETH":
                result.weth_claimed, result.weth_tx_hash = amount_wei, tx_hash
            else:
                result.token_claimed, result.token_tx_hash = amount_wei, tx_hash

        return result

    def _claim_one(self, label: str, asset: str, amount_wei: int, dry_run: bool,
                   min_amount: Optional[Decimal]) -> Optional[str]:
        ledger = self.context.ledger
        call = self._claim_call(ledger.address, asset)
        amount = wei_to_ether(amount_wei)

        commit = CommitContext(
            action=f"claim {label} fees",
            amount=amount,
            available_wei=self.context.call_with_retry(ledger.balance, "balance"),
            fee_price_wei=self.context.call_with_retry(ledger.fee_price, "fee price"),
            gas_estimate=self.context.call_with_retry(
                lambda: ledger.estimate_gas(call), f"estimate claim {label}"
            ),
            min_amount_to_act=min_amount,
        )
        decision = self.context.gate.check_before_commit(commit)
        if decision.skipped:
            return None
        decision.raise_for_rejection()

        if dry_run:
            logger.info(f"DRY RUN - would claim {amount:f} {label}")
            return None

        logger.info(f"Claiming {amount:f} {label} fees...")
        receipt = with_retry(
            lambda: ledger.submit(call),
            self.context.retry_policy,
            name=f"claim {label}",
            sleep=self.context.sleep,
        )
        logger.info(f"Claimed {amount:f} {label} (tx {receipt.tx_hash})")
        self.context.metrics.fee_claimed(float(amount), receipt.tx_hash)
        return receipt.tx_hash
