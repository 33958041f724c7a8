"""Prometheus-backed metrics hooks for the autonomy loop and task dispatch."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)

EVENTS = (
    "fee_checked",
    "fee_claimed",
    "credits_checked",
    "credits_purchased",
    "task_dispatched",
    "task_completed",
    "task_failed",
    "cycle_started",
    "cycle_completed",
    "cycle_failed",
)


@dataclass
class CycleStats:
    status: str
    actions: Iterable[str]
    duration_seconds: float


class MetricsRecorder:
    """
    Expose autonomy loop stats via Prometheus.

    Each recorder owns its registry, so several instances (tests, one-shot
    commands) never collide on metric registration.
    """

    def __init__(self, enabled: bool = True, port: int = 9100,
                 registry: Optional[CollectorRegistry] = None) -> None:
        self._enabled = bool(enabled)
        self._port = port
        self._started = False
        self._started_at = time.monotonic()
        self.registry = registry or CollectorRegistry()

        self._counts: Dict[str, int] = {event: 0 for event in EVENTS}
        self._gauges: Dict[str, float] = {}
        self._last_cycle_stats: Optional[CycleStats] = None
        self._lock = threading.Lock()

        self._event_counter = Counter(
            "autonomy_events_total",
            "Autonomy loop events by type",
            labelnames=("event",),
            registry=self.registry,
        )
        self._cycle_summary = Summary(
            "autonomy_cycle_duration_seconds",
            "Duration of a full autonomy cycle",
            registry=self.registry,
        )
        self._credit_gauge = Gauge(
            "autonomy_credit_balance_usd",
            "Last observed available credit balance",
            registry=self.registry,
        )
        self._claimed_gauge = Gauge(
            "autonomy_last_fee_claimed",
            "Amount of the most recent fee claim (ether units)",
            registry=self.registry,
        )
        self._task_latency = Summary(
            "autonomy_task_duration_seconds",
            "Duration of dispatched gateway tasks",
            labelnames=("skill",),
            registry=self.registry,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start(self) -> None:
        if not self._enabled or self._started:
            return
        start_http_server(self._port, registry=self.registry)
        self._started = True
        logger.info("Prometheus metrics exporter listening on :%s", self._port)

    def _emit(self, event: str) -> None:
        # Called from the cycle's gather threads
        with self._lock:
            self._counts[event] = self._counts.get(event, 0) + 1
        self._event_counter.labels(event=event).inc()

    def _set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = value

    # ---- Pre-defined events -------------------------------------------------

    def fee_checked(self, weth_fees_wei: int, token_fees_wei: int) -> None:
        self._emit("fee_checked")
        logger.debug("metric fee_checked weth_wei=%s token_wei=%s", weth_fees_wei, token_fees_wei)

    def fee_claimed(self, amount: float, tx_hash: str) -> None:
        self._set_gauge("last_fee_claimed", float(amount))
        self._claimed_gauge.set(float(amount))
        self._emit("fee_claimed")
        logger.debug("metric fee_claimed amount=%s tx=%s", amount, tx_hash)

    def credits_checked(self, balance: float) -> None:
        self._set_gauge("credit_balance", float(balance))
        self._credit_gauge.set(float(balance))
        self._emit("credits_checked")

    def credits_purchased(self, amount: float, tx_hash: str) -> None:
        self._emit("credits_purchased")
        logger.debug("metric credits_purchased amount=%s tx=%s", amount, tx_hash)

    def task_dispatched(self, skill: str, tier: str) -> None:
        self._emit("task_dispatched")
        logger.debug("metric task_dispatched skill=%s tier=%s", skill, tier)

    def task_completed(self, skill: str, duration_seconds: float) -> None:
        self._task_latency.labels(skill=skill).observe(duration_seconds)
        self._emit("task_completed")

    def task_failed(self, skill: str, error: str) -> None:
        self._emit("task_failed")
        logger.debug("metric task_failed skill=%s error=%s", skill, error[:100])

    def cycle_started(self) -> None:
        self._emit("cycle_started")

    def cycle_completed(self, stats: CycleStats) -> None:
        self._last_cycle_stats = stats
        self._set_gauge("last_cycle_duration_seconds", stats.duration_seconds)
        self._cycle_summary.observe(stats.duration_seconds)
        self._emit("cycle_completed")

    def cycle_failed(self, error: str) -> None:
        self._emit("cycle_failed")
        logger.debug("metric cycle_failed error=%s", error[:100])

    # ---- Read side ----------------------------------------------------------

    def counters(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def gauges(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._gauges)

    def summary(self) -> Dict[str, Any]:
        """JSON-friendly snapshot for the health endpoint."""
        return {
            "counters": self.counters(),
            "gauges": self.gauges(),
            "uptime": round(time.monotonic() - self._started_at, 3),
        }


__all__ = ["MetricsRecorder", "CycleStats", "EVENTS"]
