"""
Pytest configuration and shared fixtures.

The dashboard modules live at the repository root (flat layout), so the root
is put on sys.path to keep tests runnable without an editable install.
"""
import sys
from pathlib import Path

import pandas as pd
import pytest


def pytest_configure():
    root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(root))


# =============================================================================
# Clock
# =============================================================================

@pytest.fixture
def now() -> pd.Timestamp:
    """Fixed evaluation instant used across engine tests."""
    return pd.Timestamp("2024-07-01 12:00:00")


# =============================================================================
# Sample Documents
# =============================================================================

@pytest.fixture
def two_fund_portfolio() -> dict:
    """Targets 50/50, current values 800/200 (from balance snapshots)."""
    return {
        "capital": "200,00",
        "benchmarkAnnualRate": "10,65",
        "strategy": "target",
        "funds": [
            {
                "id": "a",
                "name": "Fund A",
                "targetPct": "50",
                "enabled": True,
                "contributions": [{"value": "700,00", "return": "0", "date": "2024-01-01"}],
                "balances": [{"value": "800,00", "date": "2024-06-01"}],
            },
            {
                "id": "b",
                "name": "Fund B",
                "targetPct": "50",
                "enabled": True,
                "contributions": [{"value": "200,00", "return": "0", "date": "2024-01-01"}],
                "balances": [{"value": "200,00", "date": "2024-06-01"}],
            },
        ],
    }


@pytest.fixture
def accrual_portfolio() -> dict:
    """Funds without snapshots: value comes from declared returns."""
    return {
        "capital": "1.000,00",
        "benchmarkAnnualRate": "10,65%",
        "strategy": "momentum",
        "funds": [
            {
                "id": "fast",
                "name": "Fast",
                "targetPct": "60",
                "contributions": [
                    {"value": "1.000,00", "return": "50,00", "date": "2024-01-01"},
                    {"value": "500,00", "return": "5,00", "date": "2024-05-01"},
                ],
                "balances": [],
            },
            {
                "id": "slow",
                "name": "Slow",
                "targetPct": "40",
                "contributions": [
                    {"value": "1.000,00", "return": "10,00", "date": "2024-01-01"},
                    {"value": "1.000,00", "return": "-20,00", "date": "2024-06-01"},
                ],
                "balances": [],
            },
        ],
    }
