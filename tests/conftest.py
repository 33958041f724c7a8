"""
Pytest configuration and fixtures for the autonomy tests.

This conftest.py provides shared fixtures for all tests.
"""
import pytest

from tests.helpers import FakeLedger, make_context


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """
    Strip env overrides and secrets so tests never depend on the host shell.

    This is applied automatically to all tests (autouse=True).
    """
    for key in (
        "MIN_CREDITS",
        "CREDIT_PURCHASE_AMOUNT",
        "MIN_WETH_FOR_TOPUP",
        "CHECK_INTERVAL_SECONDS",
        "MAX_GAS_PRICE_GWEI",
        "UPSKILL_GATEWAY_URL",
        "BASE_RPC_URL",
        "HEALTH_PORT",
        "LOG_LEVEL",
        "PRIVATE_KEY",
        "OPENROUTER_API_KEY",
    ):
        monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def context(ledger):
    return make_context(ledger=ledger)
