"""
Autonomy Core: Quota Resolver

Token holdings = compute access. Maps a holdings balance to an access tier
and its daily task quota.

Tiers (defaults):
- Unlimited: 1,000,000 tokens -> unbounded
- Pro:         100,000 tokens -> 1,000 tasks/day
- Basic:        10,000 tokens -> 100 tasks/day
- Free:              0 tokens -> 10 tasks/day
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from core.price import Number, to_decimal


@dataclass(frozen=True)
class Tier:
    name: str
    min_holdings: Decimal
    daily_quota: Optional[int]  # None = unbounded

    @property
    def unlimited(self) -> bool:
        return self.daily_quota is None

    def quota_label(self) -> str:
        return "Unlimited" if self.daily_quota is None else str(self.daily_quota)


DEFAULT_TIERS: Tuple[Tier, ...] = (
    Tier("Unlimited", Decimal("1000000"), None),
    Tier("Pro", Decimal("100000"), 1000),
    Tier("Basic", Decimal("10000"), 100),
    Tier("Free", Decimal("0"), 10),
)


class QuotaResolver:
    """Resolve holdings to tiers; total because the table has a zero floor."""

    def __init__(self, tiers: Iterable[Tier] = DEFAULT_TIERS):
        ordered: List[Tier] = sorted(tiers, key=lambda tier: tier.min_holdings, reverse=True)
        if not ordered:
            raise ValueError("Tier table must not be empty")

        thresholds = [tier.min_holdings for tier in ordered]
        if len(set(thresholds)) != len(thresholds):
            raise ValueError(f"Tier thresholds must be distinct, got {thresholds}")
        if ordered[-1].min_holdings != 0:
            raise ValueError("Tier table must include a zero-threshold catch-all tier")
        if any(tier.daily_quota is not None and tier.daily_quota < 0 for tier in ordered):
            raise ValueError("Tier quotas must be non-negative")

        self._tiers: Tuple[Tier, ...] = tuple(ordered)

    @property
    def tiers(self) -> Tuple[Tier, ...]:
        return self._tiers

    def tier_for(self, balance: Number) -> Tier:
        holdings = to_decimal(balance)
        for tier in self._tiers:
            if tier.min_holdings <= holdings:
                return tier
        # Negative balances fall through to the floor
        return self._tiers[-1]

    def daily_quota_for(self, balance: Number) -> Optional[int]:
        return self.tier_for(balance).daily_quota
