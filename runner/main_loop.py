"""
Autonomy Runner: Main Loop

Orchestrates the autonomy cycle.

Flow (per cycle):
1. Gather fees, credits and holdings (parallel)
2. Claim fees above threshold
3. Top up credits below minimum
4. Report cumulative totals

Single-shot commands (check/claim/purchase/dispatch) share the same context.
"""

import argparse
import json
import logging
import signal
import sys
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv

from core.autonomy_cycle import AutonomyCycle, CycleState
from core.context import AutonomyContext
from core.exceptions import AutonomyError, is_recoverable
from core.fee_claiming import FeeClaimer
from core.self_funding import CreditManager
from core.task_dispatcher import TaskDispatcher
from infra.healthcheck import HealthServer
from tools.config_validator import AppConfig, load_app_config, validate_all_configs

logger = logging.getLogger(__name__)


class RunState(Enum):
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class AutonomyDaemon:
    """
    Repeats the cycle on a fixed cadence until stopped or out of failure budget.

    ``request_stop()`` is safe to call from signal handlers and other threads;
    the inter-cycle sleep wakes immediately.
    """

    def __init__(self, cycle: AutonomyCycle, interval_seconds: float,
                 max_consecutive_failures: int = 5, state: Optional[CycleState] = None,
                 clock: Callable[[], float] = time.monotonic):
        if max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be >= 1")
        self.cycle = cycle
        self.interval_seconds = max(0.0, float(interval_seconds))
        self.max_consecutive_failures = max_consecutive_failures
        self.state = state or CycleState()
        self.run_state = RunState.STOPPED
        self.last_error: Optional[str] = None
        self._stop = threading.Event()
        self._clock = clock

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        if self.run_state is RunState.RUNNING:
            self.run_state = RunState.STOPPING
        self._stop.set()

    def run_forever(self) -> int:
        """Returns the process exit code: 0 on requested stop, 1 on exhausted failure budget."""
        self.run_state = RunState.RUNNING
        logger.info(f"Starting continuous loop (interval={self.interval_seconds}s, "
                    f"max_consecutive_failures={self.max_consecutive_failures})")
        try:
            while not self._stop.is_set():
                started = self._clock()
                try:
                    self.cycle.run(self.state)
                    self.state.consecutive_failures = 0
                    self.last_error = None
                except Exception as exc:
                    self.last_error = str(exc)
                    if is_recoverable(exc):
                        logger.warning(f"Recoverable error: {exc}")
                    else:
                        self.state.consecutive_failures += 1
                        logger.error(
                            f"Cycle error ({self.state.consecutive_failures}/"
                            f"{self.max_consecutive_failures}): {exc}",
                            exc_info=not isinstance(exc, AutonomyError),
                        )
                        if self.state.consecutive_failures >= self.max_consecutive_failures:
                            logger.error("Too many consecutive failures, stopping daemon")
                            return 1

                if self._stop.is_set():
                    break

                elapsed = self._clock() - started
                remaining = max(0.0, self.interval_seconds - elapsed)
                if remaining > 0:
                    logger.info(f"Cycle took {elapsed:.2f}s, next cycle in {remaining:.1f}s...")
                    self._stop.wait(remaining)

            logger.info("Daemon stopped gracefully")
            return 0
        finally:
            self.run_state = RunState.STOPPED


class AutonomyLoop:
    """
    Process-level wiring: config, logging, context, health server, signals.

    Responsibilities:
    - Validate and load config
    - Build the context and cycle
    - Run one cycle or the daemon
    - Serve health status
    """

    def __init__(self, config_dir: str = "config", dry_run: bool = False,
                 context: Optional[AutonomyContext] = None):
        self.config_dir = Path(config_dir)
        validation_errors = validate_all_configs(config_dir)
        if validation_errors:
            logger.error("=" * 80)
            logger.error("CONFIGURATION VALIDATION FAILED")
            logger.error("=" * 80)
            for idx, error in enumerate(validation_errors, start=1):
                logger.error(f"{idx:>2}. {error}")
            logger.error("=" * 80)
            raise ValueError(f"Invalid configuration: {len(validation_errors)} error(s) found")

        self.config: AppConfig = load_app_config(config_dir)
        configure_logging(self.config)

        self.context = context or AutonomyContext.from_config(self.config, dry_run=dry_run or None)
        self.mode = "DRY_RUN" if self.context.dry_run else "LIVE"
        logger.info(f"Starting autonomy loop in mode={self.mode}, wallet={self._wallet_label()}")

        self.claimer = FeeClaimer(self.context)
        self.credit_manager = CreditManager(self.context)
        self.dispatcher = TaskDispatcher(self.context)
        self.cycle = AutonomyCycle(
            self.context,
            claimer=self.claimer,
            credit_manager=self.credit_manager,
            dispatcher=self.dispatcher,
        )
        autonomy = self.config.autonomy
        self.daemon = AutonomyDaemon(
            self.cycle,
            interval_seconds=autonomy.interval_seconds,
            max_consecutive_failures=autonomy.max_consecutive_failures,
        )
        self.health_server: Optional[HealthServer] = None

    def _wallet_label(self) -> str:
        try:
            return self.context.ledger.address
        except ValueError:
            return "<none>"

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._handle_stop)
        signal.signal(signal.SIGTERM, self._handle_stop)

    def _handle_stop(self, signum=None, *_):
        logger.warning("=" * 80)
        logger.warning(f"SHUTDOWN SIGNAL RECEIVED ({signum}) - finishing current step")
        logger.warning("=" * 80)
        self.daemon.request_stop()

    def _start_health_server(self) -> None:
        monitoring = self.config.monitoring
        if not monitoring.health_enabled or self.health_server:
            return
        server = HealthServer(
            monitoring.health_port,
            self.health_status_snapshot,
            ready_check=lambda: self.daemon.run_state is RunState.RUNNING,
        )
        try:
            server.start()
        except OSError as exc:
            logger.error("Failed to start health server on port %s: %s", monitoring.health_port, exc)
            return
        self.health_server = server

    def _stop_health_server(self) -> None:
        server = self.health_server
        if not server:
            return
        try:
            server.stop()
        finally:
            self.health_server = None

    def health_status_snapshot(self) -> Dict[str, Any]:
        daemon = self.daemon
        issues = []
        if daemon.state.consecutive_failures:
            issues.append("consecutive_failures")
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "mode": self.mode,
            "run_state": daemon.run_state.value,
            "state": daemon.state.to_dict(),
            "last_error": daemon.last_error,
            "metrics": self.context.metrics.summary(),
            "issues": issues,
            "ok": daemon.state.consecutive_failures < daemon.max_consecutive_failures,
        }

    def run_once(self) -> int:
        logger.info("=" * 80)
        logger.info("AUTONOMY LOOP - SINGLE RUN")
        logger.info("=" * 80)
        self.cycle.run(self.daemon.state)
        logger.info("Single cycle complete (run with --daemon for continuous operation)")
        return 0

    def run_forever(self) -> int:
        self.context.metrics.start()
        self._start_health_server()
        try:
            return self.daemon.run_forever()
        finally:
            self._stop_health_server()


def configure_logging(config: AppConfig) -> None:
    handlers = [logging.StreamHandler()]
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=getattr(logging, config.logging.level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Autonomy loop: earn, claim, fund, operate, repeat")
    parser.add_argument("--config-dir", default="config", help="Config directory")
    parser.add_argument("--dry-run", action="store_true", help="Prepare transactions but never submit them")
    sub = parser.add_subparsers(dest="command", required=True)

    check_fees = sub.add_parser("check-fees", help="Show claimable fees")
    check_fees.add_argument("--wallet", help="Fee owner (default: signing wallet)")
    check_fees.add_argument("--token", help="Token address (default: configured token)")

    claim = sub.add_parser("claim-fees", help="Claim accumulated fees")
    claim.add_argument("--token", help="Token address (default: configured token)")
    claim.add_argument("--claim-both", action="store_true", help="Also claim token-denominated fees")

    sub.add_parser("check-credits", help="Show credit balance")

    purchase = sub.add_parser("purchase-credits", help="Buy credits with native currency")
    purchase.add_argument("--amount", default=None, help="USD amount (default: configured purchase amount)")

    agent = sub.add_parser("agent-info", help="Show holdings tier and quota for a wallet")
    agent.add_argument("--wallet", help="Wallet (default: signing wallet)")

    dispatch = sub.add_parser("dispatch", help="Dispatch one skill task")
    dispatch.add_argument("--skill", required=True)
    dispatch.add_argument("--params", default="{}", help="JSON object of skill params")
    dispatch.add_argument("--wallet", help="Agent wallet (default: signing wallet)")
    dispatch.add_argument("--priority", default="normal", choices=["low", "normal", "high"])

    run = sub.add_parser("run", help="Run the autonomy cycle")
    run.add_argument("--daemon", "-d", action="store_true", help="Run continuously")
    return parser


def run_command(loop: AutonomyLoop, args: argparse.Namespace) -> int:
    if args.command == "check-fees":
        info = loop.claimer.check_fees(args.wallet, args.token)
        _print({
            "wallet": info.wallet,
            "token": info.token,
            "weth_fees": f"{info.weth_fees_ether:f}",
            "token_fees": f"{info.token_fees_ether:f}",
            "has_claimable": info.has_claimable,
        })
        return 0

    if args.command == "claim-fees":
        result = loop.claimer.claim_fees(args.token, claim_both=args.claim_both, dry_run=args.dry_run)
        _print(vars(result))
        return 0

    if args.command == "check-credits":
        balance = loop.credit_manager.check_credits()
        _print(vars(balance))
        return 0

    if args.command == "purchase-credits":
        amount = args.amount if args.amount is not None else loop.config.autonomy.credit_purchase_amount
        result = loop.credit_manager.purchase_credits(amount, dry_run=args.dry_run)
        _print(vars(result))
        return 0

    if args.command == "agent-info":
        info = loop.dispatcher.get_agent_info(args.wallet or loop.context.ledger.address)
        _print({
            "wallet": info.wallet,
            "balance": f"{info.balance:f}",
            "tier": info.tier.name,
            "daily_quota": info.tier.quota_label(),
        })
        return 0

    if args.command == "dispatch":
        try:
            params = json.loads(args.params)
        except json.JSONDecodeError as exc:
            raise ValueError(f"--params must be a JSON object: {exc}")
        result = loop.dispatcher.dispatch_task({
            "skill": args.skill,
            "params": params,
            "agent_wallet": args.wallet or loop.context.ledger.address,
            "priority": args.priority,
        })
        _print(result.to_dict())
        return 0 if result.success else 1

    if args.command == "run":
        if args.daemon:
            loop.install_signal_handlers()
            return loop.run_forever()
        return loop.run_once()

    raise ValueError(f"Unknown command: {args.command}")


def main(argv=None) -> int:
    """Entry point"""
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        loop = AutonomyLoop(config_dir=args.config_dir, dry_run=args.dry_run)
        return run_command(loop, args)
    except (AutonomyError, ValueError) as exc:
        logger.error(f"Error: {exc}")
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
