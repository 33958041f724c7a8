"""Tests for holdings-based tier resolution."""

from decimal import Decimal

import pytest

from core.quota import DEFAULT_TIERS, QuotaResolver, Tier


@pytest.fixture
def resolver():
    return QuotaResolver()


class TestDefaultTiers:
    @pytest.mark.parametrize("balance,expected", [
        (0, "Free"),
        (9_999, "Free"),
        (10_000, "Basic"),
        (99_999.99, "Basic"),
        (100_000, "Pro"),
        (999_999, "Pro"),
        (1_000_000, "Unlimited"),
        (50_000_000, "Unlimited"),
    ])
    def test_tier_boundaries_are_inclusive(self, resolver, balance, expected):
        assert resolver.tier_for(balance).name == expected

    def test_quotas(self, resolver):
        assert resolver.daily_quota_for(0) == 10
        assert resolver.daily_quota_for(10_000) == 100
        assert resolver.daily_quota_for(100_000) == 1000
        assert resolver.daily_quota_for(1_000_000) is None

    def test_unlimited_label(self, resolver):
        tier = resolver.tier_for(1_000_000)
        assert tier.unlimited
        assert tier.quota_label() == "Unlimited"
        assert resolver.tier_for(0).quota_label() == "10"

    def test_negative_balance_falls_to_floor(self, resolver):
        assert resolver.tier_for(-5).name == "Free"

    def test_resolution_is_monotonic(self, resolver):
        balances = [0, 1, 9_999, 10_000, 50_000, 100_000, 500_000, 1_000_000, 10**9]
        minimums = [resolver.tier_for(b).min_holdings for b in balances]
        assert minimums == sorted(minimums)


class TestCustomTables:
    def test_unsorted_input_is_sorted_descending(self):
        resolver = QuotaResolver(reversed(DEFAULT_TIERS))
        assert [t.name for t in resolver.tiers] == ["Unlimited", "Pro", "Basic", "Free"]

    def test_missing_zero_floor_rejected(self):
        with pytest.raises(ValueError, match="zero-threshold"):
            QuotaResolver([Tier("Gold", Decimal("10"), 5)])

    def test_duplicate_thresholds_rejected(self):
        with pytest.raises(ValueError, match="distinct"):
            QuotaResolver([Tier("A", Decimal("0"), 1), Tier("B", Decimal("0"), 2)])

    def test_empty_table_rejected(self):
        with pytest.raises(ValueError):
            QuotaResolver([])

    def test_negative_quota_rejected(self):
        with pytest.raises(ValueError):
            QuotaResolver([Tier("Free", Decimal("0"), -1)])
