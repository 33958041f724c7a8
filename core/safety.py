"""
Autonomy Core: Safety Gate

Pre-flight checks run immediately before any value-transferring call.
Nothing is submitted to the ledger unless every check passes.

Checks (in order):
1. Dead-zone: amounts below ``min_amount_to_act`` are skipped, not rejected
2. Fee-price ceiling: network fee price above the ceiling -> RECOVERABLE
3. Balance: required cost x safety multiplier must fit the available balance -> FATAL
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
import logging

from core.exceptions import AutonomyError, ErrorClass
from core.price import Number, to_decimal

logger = logging.getLogger(__name__)

WEI_PER_ETHER = Decimal(10) ** 18
WEI_PER_GWEI = Decimal(10) ** 9


def format_ether(wei: int) -> str:
    return f"{(Decimal(wei) / WEI_PER_ETHER).normalize():f}"


@dataclass(frozen=True)
class SafetyThresholds:
    """Immutable gate configuration; values are defaults, not invariants."""
    min_funding_buffer_pct: Decimal = Decimal("20")
    max_fee_price_gwei: Decimal = Decimal("50")
    min_amount_to_act: Decimal = Decimal("0")
    safety_multiplier: Decimal = Decimal("1.2")


class GateDecision(Enum):
    OK = "ok"
    SKIP = "skip"
    REJECT = "reject"


@dataclass(frozen=True)
class CommitContext:
    """
    Everything the gate needs to judge one mutating call.

    ``amount`` is in the action's natural unit (ether for claims, USD for
    purchases) and only feeds the dead-zone check. ``value_wei`` is the native
    value attached to the call; gas cost is ``gas_estimate * fee_price_wei``.
    """
    action: str
    amount: Decimal
    available_wei: int
    fee_price_wei: int
    gas_estimate: int = 0
    value_wei: int = 0
    min_amount_to_act: Optional[Decimal] = None

    @property
    def gas_cost_wei(self) -> int:
        return self.gas_estimate * self.fee_price_wei

    @property
    def required_wei(self) -> int:
        return self.value_wei + self.gas_cost_wei


@dataclass
class GateResult:
    """Result of a pre-commit check"""
    decision: GateDecision
    reason: Optional[str] = None
    check: Optional[str] = None
    error_class: Optional[ErrorClass] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.decision is GateDecision.OK

    @property
    def skipped(self) -> bool:
        return self.decision is GateDecision.SKIP

    @property
    def rejected(self) -> bool:
        return self.decision is GateDecision.REJECT

    def raise_for_rejection(self) -> None:
        if not self.rejected:
            return
        raise AutonomyError(
            self.error_class or ErrorClass.FATAL,
            self.reason or "Safety gate rejected commit",
            check=self.check,
            details=dict(self.details),
        )


class SafetyGate:
    """Hard pre-commit constraints. Stateless apart from its thresholds."""

    def __init__(self, thresholds: Optional[SafetyThresholds] = None):
        self.thresholds = thresholds or SafetyThresholds()

    def check_before_commit(self, context: CommitContext) -> GateResult:
        for check in (self._check_dead_zone, self._check_fee_price, self._check_balance):
            result = check(context)
            if not result.ok:
                return result
        logger.debug(
            f"Safety gate passed for {context.action}: required {format_ether(context.required_wei)} "
            f"of {format_ether(context.available_wei)} available"
        )
        return GateResult(decision=GateDecision.OK)

    def _check_dead_zone(self, context: CommitContext) -> GateResult:
        floor = context.min_amount_to_act
        if floor is None:
            floor = self.thresholds.min_amount_to_act
        if context.amount < floor:
            logger.info(f"{context.action}: {context.amount} below threshold ({floor}), skipping")
            return GateResult(
                decision=GateDecision.SKIP,
                reason=f"{context.action} amount {context.amount} below threshold {floor}",
                check="dead_zone",
                details={"amount": str(context.amount), "threshold": str(floor)},
            )
        return GateResult(decision=GateDecision.OK)

    def _check_fee_price(self, context: CommitContext) -> GateResult:
        fee_price_gwei = Decimal(context.fee_price_wei) / WEI_PER_GWEI
        ceiling = self.thresholds.max_fee_price_gwei
        if fee_price_gwei > ceiling:
            reason = (
                f"Gas price too high: {fee_price_gwei.normalize():f} gwei "
                f"(max: {ceiling} gwei). Try again later."
            )
            logger.warning(f"{context.action}: {reason}")
            return GateResult(
                decision=GateDecision.REJECT,
                reason=reason,
                check="fee_price_ceiling",
                error_class=ErrorClass.RECOVERABLE,
                details={"fee_price_gwei": str(fee_price_gwei), "ceiling_gwei": str(ceiling)},
            )
        return GateResult(decision=GateDecision.OK)

    def _check_balance(self, context: CommitContext) -> GateResult:
        if not balance_covers(context.available_wei, context.required_wei, self.thresholds.safety_multiplier):
            needed_wei = int(Decimal(context.required_wei) * self.thresholds.safety_multiplier)
            reason = (
                f"Insufficient balance for {context.action}. "
                f"Need ~{format_ether(needed_wei)} ETH, have {format_ether(context.available_wei)} ETH"
            )
            logger.error(reason)
            return GateResult(
                decision=GateDecision.REJECT,
                reason=reason,
                check="balance",
                error_class=ErrorClass.FATAL,
                details={
                    "needed_wei": needed_wei,
                    "available_wei": context.available_wei,
                    "shortfall_wei": needed_wei - context.available_wei,
                },
            )
        return GateResult(decision=GateDecision.OK)


def balance_covers(available: Number, required: Number, multiplier: Number = Decimal("1.2")) -> bool:
    """True when ``required * multiplier`` fits inside ``available``."""
    return to_decimal(required) * to_decimal(multiplier) <= to_decimal(available)
