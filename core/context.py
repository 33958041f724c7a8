"""
Autonomy Core: Runtime Context

Every collaborator the loop needs, built once at startup and passed
explicitly to each service. Tests construct it directly with fakes.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from core.price import PriceCache
from core.quota import QuotaResolver
from core.retry import RetryPolicy, with_retry
from core.safety import SafetyGate, SafetyThresholds
from infra.credits_api import CreditsClient
from infra.gateway import GatewayClient
from infra.ledger import LedgerClient
from infra.metrics import MetricsRecorder
from tools.config_validator import AppConfig, RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def policy_from_settings(settings: RetrySettings) -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.max_retries,
        initial_delay=settings.initial_delay,
        backoff_multiplier=settings.backoff_multiplier,
        max_delay=settings.max_delay,
    )


def thresholds_from_config(config: AppConfig) -> SafetyThresholds:
    return SafetyThresholds(
        min_funding_buffer_pct=config.safety.funding_buffer_pct,
        max_fee_price_gwei=config.safety.max_fee_price_gwei,
        min_amount_to_act=config.safety.min_amount_to_act,
        safety_multiplier=config.safety.safety_multiplier,
    )


@dataclass
class AutonomyContext:
    """Shared services for fee claiming, self-funding and task dispatch."""
    config: AppConfig
    ledger: LedgerClient
    credits: CreditsClient
    gateway: GatewayClient
    price_cache: PriceCache
    gate: SafetyGate
    quota: QuotaResolver
    metrics: MetricsRecorder
    # Chain reads and transaction submits
    retry_policy: RetryPolicy = field(default_factory=lambda: RetryPolicy(max_retries=2))
    dry_run: bool = False
    sleep: Callable[[float], None] = time.sleep

    @property
    def token(self) -> str:
        return self.config.chain.token

    def call_with_retry(self, operation: Callable[[], T], name: str) -> T:
        """Run a chain read or submit under the context retry policy."""
        return with_retry(operation, self.retry_policy, name=name, sleep=self.sleep)

    @classmethod
    def from_config(cls, config: AppConfig, private_key: Optional[str] = None,
                    api_key: Optional[str] = None, dry_run: Optional[bool] = None,
                    metrics: Optional[MetricsRecorder] = None) -> "AutonomyContext":
        """Wire real network clients from validated configuration."""
        http_policy = policy_from_settings(config.http_retry)

        ledger = LedgerClient(
            rpc_url=config.chain.rpc_url,
            private_key=private_key or os.getenv("PRIVATE_KEY") or None,
            chain_id=config.chain.chain_id,
            confirmation_timeout=config.chain.confirmation_timeout_seconds,
        )
        credits = CreditsClient(
            api_key=api_key or os.getenv("OPENROUTER_API_KEY", ""),
            base_url=config.services.credits_base_url,
            policy=http_policy,
            chain_id=config.chain.chain_id,
        )
        gateway = GatewayClient(base_url=config.services.gateway_url, policy=http_policy)
        price_cache = PriceCache(
            lambda: ledger.latest_round(config.chain.price_feed),
            ttl_seconds=config.price.cache_ttl_seconds,
            staleness_seconds=config.price.staleness_seconds,
        )

        effective_dry_run = config.dry_run if dry_run is None else dry_run
        logger.info(f"Built autonomy context (dry_run={effective_dry_run}, read_only={ledger.read_only})")

        return cls(
            config=config,
            ledger=ledger,
            credits=credits,
            gateway=gateway,
            price_cache=price_cache,
            gate=SafetyGate(thresholds_from_config(config)),
            quota=QuotaResolver(),
            metrics=metrics or MetricsRecorder(
                enabled=config.monitoring.metrics_enabled,
                port=config.monitoring.metrics_port,
            ),
            retry_policy=policy_from_settings(config.retry),
            dry_run=effective_dry_run,
        )
