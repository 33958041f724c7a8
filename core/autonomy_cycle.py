"""
Autonomy Cycle Pipeline

One pass of the loop:
1. Gathering - fee check, credit check and agent info in parallel (all-or-fail)
2. Claim decision - claim WETH fees above the configured threshold
3. Funding - top up credits when below the minimum
4. Reporting - log cumulative totals

Claim and fund run strictly one after the other. Recoverable failures and
safety-gate rejections in either step are logged and the cycle continues;
anything else fails the cycle.
"""

import logging
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from core.context import AutonomyContext
from core.exceptions import AutonomyError
from core.fee_claiming import FeeClaimer, FeeInfo, wei_to_ether
from core.self_funding import CreditBalance, CreditManager
from core.task_dispatcher import AgentInfo, TaskDispatcher
from infra.metrics import CycleStats

logger = logging.getLogger(__name__)


@dataclass
class CycleState:
    """Cumulative loop state; owned by the daemon, never reset between cycles."""
    cycle_count: int = 0
    consecutive_failures: int = 0
    total_claimed: Decimal = Decimal("0")
    total_purchased: Decimal = Decimal("0")
    tasks_executed: int = 0
    last_fee_check: Optional[datetime] = None
    last_credit_check: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_count": self.cycle_count,
            "consecutive_failures": self.consecutive_failures,
            "total_claimed": str(self.total_claimed),
            "total_purchased": str(self.total_purchased),
            "tasks_executed": self.tasks_executed,
            "last_fee_check": self.last_fee_check.isoformat() if self.last_fee_check else None,
            "last_credit_check": self.last_credit_check.isoformat() if self.last_credit_check else None,
        }


@dataclass
class CycleReport:
    """Result of one autonomy cycle"""
    cycle_number: int
    fees: Optional[FeeInfo] = None
    credits: Optional[CreditBalance] = None
    agent: Optional[AgentInfo] = None
    claimed_wei: int = 0
    purchased_usd: Decimal = Decimal("0")
    actions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def status(self) -> str:
        return "degraded" if self.warnings else "ok"


class AutonomyCycle:
    """
    Reusable cycle pipeline.

    Used by the daemon loop and by the one-shot ``run`` command.
    """

    def __init__(self, context: AutonomyContext,
                 claimer: Optional[FeeClaimer] = None,
                 credit_manager: Optional[CreditManager] = None,
                 dispatcher: Optional[TaskDispatcher] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.context = context
        self.claimer = claimer or FeeClaimer(context)
        self.credit_manager = credit_manager or CreditManager(context)
        self.dispatcher = dispatcher or TaskDispatcher(context)
        self._clock = clock

    def run(self, state: CycleState) -> CycleReport:
        state.cycle_count += 1
        report = CycleReport(cycle_number=state.cycle_count)
        started = self._clock()
        metrics = self.context.metrics

        logger.info("=" * 80)
        logger.info(f"AUTONOMY CYCLE {state.cycle_count}")
        logger.info("=" * 80)
        metrics.cycle_started()

        try:
            self._gather(state, report)
            self._claim_step(state, report)
            self._fund_step(state, report)
        except Exception as exc:
            metrics.cycle_failed(str(exc))
            raise

        report.duration_seconds = self._clock() - started
        self._report(state, report)
        metrics.cycle_completed(CycleStats(
            status=report.status,
            actions=list(report.actions),
            duration_seconds=report.duration_seconds,
        ))
        return report

    # ---- Step 1 -------------------------------------------------------------

    def _gather(self, state: CycleState, report: CycleReport) -> None:
        logger.info("Step 1: Gathering status (parallel)")
        wallet = self.context.ledger.address
        pool = ThreadPoolExecutor(max_workers=3, thread_name_prefix="gather")
        try:
            futures = {
                "fees": pool.submit(self.claimer.check_fees, wallet, self.context.token),
                "credits": pool.submit(self.credit_manager.check_credits),
                "agent": pool.submit(self.dispatcher.get_agent_info, wallet),
            }
            done, _pending = wait(
                futures.values(),
                timeout=self.context.config.autonomy.gather_timeout_seconds,
                return_when=FIRST_EXCEPTION,
            )
            for name, future in futures.items():
                if future in done and future.exception() is not None:
                    logger.error(f"Gathering failed on {name}: {future.exception()}")
                    raise future.exception()
            if len(done) != len(futures):
                raise AutonomyError.recoverable("Gathering timed out waiting for status reads")
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        report.fees = futures["fees"].result()
        report.credits = futures["credits"].result()
        report.agent = futures["agent"].result()

        now = datetime.now(timezone.utc)
        state.last_fee_check = now
        state.last_credit_check = now

        logger.info(f"WETH fees: {report.fees.weth_fees_ether:f} WETH")
        logger.info(f"Credits: ${report.credits.available:.2f}")
        logger.info(f"Token holdings: {report.agent.balance:f} ({report.agent.tier.name})")

    # ---- Step 2 -------------------------------------------------------------

    def _claim_step(self, state: CycleState, report: CycleReport) -> None:
        logger.info("Step 2: Fee management")
        threshold = self.context.config.autonomy.min_claim_amount
        fees = report.fees

        if fees.weth_fees <= 0 or fees.weth_fees_ether < threshold:
            logger.info(f"Fees below threshold ({threshold} WETH), skipping claim")
            report.actions.append("claim_skipped")
            return

        try:
            result = self.claimer.claim_fees(
                self.context.token, claim_both=False, fee_info=fees, min_amount=threshold,
            )
        except AutonomyError as exc:
            if not (exc.is_recoverable or exc.from_gate):
                raise
            logger.warning(f"Fee claim skipped: {exc}")
            report.warnings.append(f"claim: {exc}")
            return

        if result.weth_claimed > 0:
            state.total_claimed += wei_to_ether(result.weth_claimed)
            report.claimed_wei = result.weth_claimed
            report.actions.append("claimed")
            logger.info(f"Claimed {wei_to_ether(result.weth_claimed):f} WETH")
        elif result.dry_run:
            report.actions.append("claim_dry_run")
        else:
            report.actions.append("claim_skipped")

    # ---- Step 3 -------------------------------------------------------------

    def _fund_step(self, state: CycleState, report: CycleReport) -> None:
        logger.info("Step 3: Credit management")
        autonomy = self.context.config.autonomy

        if report.credits.available >= autonomy.min_credits:
            logger.info("Credit balance healthy")
            return

        logger.warning(f"Credits low! Purchasing ${autonomy.credit_purchase_amount}...")
        try:
            result = self.credit_manager.purchase_credits(autonomy.credit_purchase_amount)
        except AutonomyError as exc:
            if not (exc.is_recoverable or exc.from_gate):
                raise
            logger.warning(f"Credit purchase skipped: {exc}")
            report.warnings.append(f"purchase: {exc}")
            return

        if result.purchased:
            state.total_purchased += result.amount
            report.purchased_usd = result.amount
            report.actions.append("purchased")
        elif result.dry_run:
            report.actions.append("purchase_dry_run")
        else:
            report.actions.append("purchase_skipped")

    # ---- Step 4 -------------------------------------------------------------

    def _report(self, state: CycleState, report: CycleReport) -> None:
        logger.info("-" * 80)
        logger.info(f"CYCLE SUMMARY ({report.status}, {report.duration_seconds:.2f}s)")
        logger.info(f"  Total WETH claimed: {state.total_claimed:f} WETH")
        logger.info(f"  Total credits purchased: ${state.total_purchased}")
        logger.info(f"  Tasks executed: {state.tasks_executed}")
        logger.info(f"  Cycles completed: {state.cycle_count}")
        logger.info("-" * 80)
