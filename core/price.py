"""
Autonomy Core: Price Cache

Caches the oracle price used to size credit purchases.

Two independent knobs:
- ``ttl_seconds`` bounds RPC cost (how long a fetched snapshot is reused)
- ``staleness_seconds`` bounds financial risk (maximum age of oracle data)
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Generic, Optional, TypeVar, Union

from core.exceptions import AutonomyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Number = Union[int, float, str, Decimal]

FUNDING_QUANTUM = Decimal("0.000001")  # 6 fractional digits
DEFAULT_TTL_SECONDS = 60.0
DEFAULT_STALENESS_SECONDS = 3600.0


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps float inputs from dragging binary noise into the math
    return Decimal(str(value))


@dataclass(frozen=True)
class OracleRound:
    """Raw oracle read: integer answer plus its reporting precision."""
    answer: int
    decimals: int
    updated_at: int
    round_id: int

    @property
    def value(self) -> Decimal:
        return Decimal(self.answer).scaleb(-self.decimals)


@dataclass(frozen=True)
class PriceSnapshot:
    value: Decimal
    observed_at: float
    source_round: int

    def age(self, now: float) -> float:
        return now - self.observed_at


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class PriceCache:
    """
    Oracle price with TTL caching and staleness enforcement.

    A snapshot older than the staleness window is never returned: it is
    discarded and refetched, and a refetch that is also stale fails the call.
    """

    def __init__(self, fetch_round: Callable[[], OracleRound],
                 ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 staleness_seconds: float = DEFAULT_STALENESS_SECONDS,
                 clock: Callable[[], float] = time.time):
        if ttl_seconds < 0 or staleness_seconds <= 0:
            raise ValueError("ttl_seconds must be >= 0 and staleness_seconds > 0")
        self._fetch_round = fetch_round
        self.ttl_seconds = float(ttl_seconds)
        self.staleness_seconds = float(staleness_seconds)
        self._clock = clock
        self._entry: Optional[CacheEntry[PriceSnapshot]] = None
        self.fetch_count = 0

    def get_price(self) -> PriceSnapshot:
        now = self._clock()
        entry = self._entry
        if entry is not None and not entry.is_expired(now):
            if entry.value.age(now) <= self.staleness_seconds:
                return entry.value
            logger.info("Cached price aged past staleness window, refetching")

        self._entry = None
        snapshot = self._fetch_fresh(now)
        self._entry = CacheEntry(value=snapshot, expires_at=now + self.ttl_seconds)
        return snapshot

    def _fetch_fresh(self, now: float) -> PriceSnapshot:
        self.fetch_count += 1
        oracle_round = self._fetch_round()

        age = now - oracle_round.updated_at
        if age > self.staleness_seconds:
            raise AutonomyError.recoverable(
                f"Oracle price is stale: last updated {round(age / 60)} minutes ago "
                f"(max {round(self.staleness_seconds / 60)} minutes)",
                details={"age_seconds": age, "round_id": oracle_round.round_id},
            )

        value = oracle_round.value
        if value <= 0:
            raise AutonomyError.fatal(
                f"Oracle returned non-positive price {value}",
                details={"round_id": oracle_round.round_id},
            )

        logger.debug(f"Oracle price {value} (round {oracle_round.round_id}, age {age:.0f}s)")
        return PriceSnapshot(value=value, observed_at=float(oracle_round.updated_at),
                             source_round=oracle_round.round_id)

    def amount_for_target(self, target_units: Number, buffer_pct: Number = 20) -> Decimal:
        """
        Funding amount needed to cover ``target_units`` plus a safety buffer.

        funding = target * (1 + buffer/100) / price, rounded to 6 decimals.
        """
        target = to_decimal(target_units)
        buffer = to_decimal(buffer_pct)
        if target <= 0:
            raise ValueError(f"target_units must be positive, got {target}")
        if buffer < 0:
            raise ValueError(f"buffer_pct must be non-negative, got {buffer}")

        price = self.get_price().value
        funding = target * (1 + buffer / 100) / price
        return funding.quantize(FUNDING_QUANTUM, rounding=ROUND_HALF_UP)

    def to_target_units(self, amount: Number) -> Decimal:
        return to_decimal(amount) * self.get_price().value

    def clear(self) -> None:
        self._entry = None
