"""Test helpers for the autonomy test suite"""

from tests.helpers.autonomy_fakes import (
    ETHER,
    GWEI,
    WALLET,
    OTHER_WALLET,
    COMMERCE_CONTRACT,
    FakeLedger,
    make_round,
    make_intent,
    make_context,
)

__all__ = [
    "ETHER",
    "GWEI",
    "WALLET",
    "OTHER_WALLET",
    "COMMERCE_CONTRACT",
    "FakeLedger",
    "make_round",
    "make_intent",
    "make_context",
]
