import copy

import pandas as pd
import pytest

from financial_math import calc_implied_speed, classify_risk, compute_period_return
from portfolio_engine import (
    analyze_fund,
    allocation_deviation,
    compute_allocation_plan,
    run_engine,
)


def _fund(result, fund_id):
    return next(f for f in result["calculated_funds"] if f["id"] == fund_id)


def _plan(result, fund_id):
    return next(p for p in result["allocation_plan"] if p["fund_id"] == fund_id)


# -----------------------------------------------------------------------------
# Per-fund analysis
# -----------------------------------------------------------------------------

def test_weekly_rate_from_contribution(now):
    fund = {"contributions": [{"value": "1000", "return": "100", "date": str(now - pd.Timedelta(days=7))}]}
    result = analyze_fund(fund, 0.10, now)
    row = result["contributions"][0]
    assert row["valid"] is True
    assert row["yield_per_week"] == pytest.approx(0.10)
    assert row["total_value"] == 1100.0
    assert result["rw_first"] == result["rw_last"] == pytest.approx(0.10)


def test_invalid_contributions_are_flagged_and_excluded(now):
    fund = {
        "contributions": [
            {"value": "0", "return": "10", "date": "2024-01-01"},
            {"value": "100", "return": "10", "date": ""},
            {"value": "100", "return": "10", "date": "2024-01-01"},
        ]
    }
    result = analyze_fund(fund, 0.10, now)
    assert [c["valid"] for c in result["contributions"]] == [False, False, True]
    assert result["invested_total"] == 100.0
    assert result["current_value"] == 110.0


def test_degenerate_fund(now):
    result = analyze_fund({"name": "Empty"}, 0.10, now, position=3)
    assert result["id"] == "fund-3"
    assert result["current_value"] == 0.0
    assert result["risk"] is None
    assert result["risk_label"] == "insufficient data"
    assert result["has_data"] is False
    assert result["equity_series"].empty


def test_latest_snapshot_is_current_value(now):
    fund = {
        "contributions": [{"value": "1000", "return": "0", "date": "2024-01-01"}],
        "balances": [
            {"value": "1100", "date": "2024-06-01"},
            {"value": "1050", "date": "2024-03-01"},
            {"value": "0", "date": "2024-06-15"},
        ],
    }
    result = analyze_fund(fund, 0.10, now)
    assert result["current_value"] == 1100.0
    assert result["realized_return"] == 100.0
    assert len(result["balance_points"]) == 2


def test_first_and_last_break_ties_by_input_order(now):
    fund = {
        "contributions": [
            {"value": "100", "return": "1", "date": "2024-01-01"},
            {"value": "100", "return": "5", "date": "2024-01-01"},
        ]
    }
    result = analyze_fund(fund, 0.10, now)
    assert result["first_contribution"]["return"] == 1.0
    assert result["last_contribution"]["return"] == 1.0


def test_zero_spread_risk_is_none_label(now):
    fund = {
        "contributions": [
            {"value": "100", "return": "0", "date": "2024-01-01"},
            {"value": "100", "return": "0", "date": "2024-03-01"},
        ]
    }
    result = analyze_fund(fund, 0.10, now)
    assert result["risk"] == 0.0
    assert result["risk_label"] == "none"


def test_balance_series_starts_at_first_contribution(now, two_fund_portfolio):
    result = run_engine(two_fund_portfolio, now=now)
    equity = _fund(result, "a")["equity_series"]
    invested = _fund(result, "a")["invested_series"]

    assert equity.iloc[0] == 0.0
    assert equity.loc[pd.Timestamp("2024-01-01")] == pytest.approx(700.0)
    assert equity.loc[pd.Timestamp("2024-06-01")] == pytest.approx(800.0)
    assert equity.index[-1] == now
    assert equity.iloc[-1] == 800.0
    assert invested.iloc[0] == 0.0
    assert invested.iloc[-1] == 700.0


def test_accrual_series_without_snapshots(now, accrual_portfolio):
    result = run_engine(accrual_portfolio, now=now)
    fast = _fund(result, "fast")
    equity = fast["equity_series"]

    assert fast["current_value"] == pytest.approx(1555.0)
    assert equity.iloc[0] == 0.0
    assert equity.loc[pd.Timestamp("2024-01-01")] == pytest.approx(1000.0)
    assert equity.iloc[-1] == pytest.approx(1555.0)
    assert fast["invested_series"].iloc[-1] == pytest.approx(1500.0)


# -----------------------------------------------------------------------------
# Aggregation
# -----------------------------------------------------------------------------

def test_portfolio_totals_and_compliance(now, two_fund_portfolio):
    result = run_engine(two_fund_portfolio, now=now)
    assert result["portfolio_total_value"] == 1000.0
    assert result["portfolio_total_invested"] == 900.0
    assert result["portfolio_total_return"] == pytest.approx(100.0)
    assert result["portfolio_return_pct"] == pytest.approx(1000.0 / 900.0 - 1)
    assert result["total_target_pct"] == 100.0
    assert result["target_compliant"] is True
    assert result["capital"] == 200.0
    assert result["years"] == [2024]
    assert now.normalize() in result["dates"]


def test_target_sum_warning(now, two_fund_portfolio):
    two_fund_portfolio["funds"][1]["targetPct"] = "40"
    result = run_engine(two_fund_portfolio, now=now)
    assert result["total_target_pct"] == 90.0
    assert result["target_compliant"] is False


def test_target_sum_ignores_disabled_funds(now, two_fund_portfolio):
    two_fund_portfolio["funds"][0]["targetPct"] = "100"
    two_fund_portfolio["funds"][1]["enabled"] = False
    result = run_engine(two_fund_portfolio, now=now)
    assert result["total_target_pct"] == 100.0
    assert result["target_compliant"] is True


def test_portfolio_series_max_window_matches_total_return(now, two_fund_portfolio):
    result = run_engine(two_fund_portfolio, now=now)
    equity, invested = result["equity_series"], result["invested_series"]

    assert equity.iloc[0] == 0.0
    assert equity.loc[pd.Timestamp("2024-01-01")] == pytest.approx(900.0)
    assert equity.iloc[-1] == pytest.approx(1000.0)

    period = compute_period_return(equity, invested)
    assert period["period_return_pct"] == pytest.approx(result["portfolio_return_pct"])


def test_deviation_labels():
    assert allocation_deviation(50.5, 50.0)[1] == "ideal"
    assert allocation_deviation(53.0, 50.0)[1] == "marginal"
    assert allocation_deviation(57.0, 50.0)[1] == "overweight"
    assert allocation_deviation(43.0, 50.0)[1] == "underweight"
    assert allocation_deviation(80.0, 50.0) == (30.0, "rebalance")
    assert allocation_deviation(10.0, 0.0) == (None, None)


def test_risk_labels_and_weighted_global_risk(now, accrual_portfolio):
    result = run_engine(accrual_portfolio, now=now)
    fast, slow = _fund(result, "fast"), _fund(result, "slow")

    assert fast["risk_label"] == "low"
    assert slow["risk_label"] == "moderate"

    expected = (fast["risk"] * fast["current_value"] + slow["risk"] * slow["current_value"]) / (
        fast["current_value"] + slow["current_value"]
    )
    assert result["global_risk"]["value"] == pytest.approx(expected)
    assert result["global_risk"]["label"] == classify_risk(expected)


def test_global_risk_none_without_measurable_funds(now, two_fund_portfolio):
    assert run_engine(two_fund_portfolio, now=now)["global_risk"] is None


def test_global_risk_counts_unmeasured_funds_in_total(now, accrual_portfolio):
    accrual_portfolio["funds"].append({
        "id": "single",
        "name": "Single",
        "targetPct": "0",
        "contributions": [{"value": "2.000,00", "return": "20,00", "date": "2024-03-01"}],
        "balances": [],
    })
    result = run_engine(accrual_portfolio, now=now)
    fast, slow, single = (_fund(result, i) for i in ("fast", "slow", "single"))

    assert single["risk"] is None
    assert single["current_value"] == pytest.approx(2020.0)

    expected = (fast["risk"] * fast["current_value"] + slow["risk"] * slow["current_value"]) / (
        result["portfolio_total_value"]
    )
    assert result["global_risk"]["value"] == pytest.approx(expected)
    assert result["global_risk"]["label"] == classify_risk(expected)


# -----------------------------------------------------------------------------
# Allocation
# -----------------------------------------------------------------------------

def test_target_allocation(now, two_fund_portfolio):
    result = run_engine(two_fund_portfolio, now=now)
    assert _plan(result, "a")["movement"] == 0.0
    assert _plan(result, "a")["reason"] == ""
    assert _plan(result, "b")["movement"] == pytest.approx(200.0)
    assert _plan(result, "b")["reason"] == "Target deficit: R$ 400,00"
    assert _fund(result, "a")["deviation_label"] == "rebalance"


def test_disabled_funds_get_nothing(now, two_fund_portfolio):
    two_fund_portfolio["funds"][1]["enabled"] = False
    result = run_engine(two_fund_portfolio, now=now)
    assert all(p["movement"] == 0.0 for p in result["allocation_plan"])
    assert all(p["reason"] == "" for p in result["allocation_plan"])
    # still counted in totals
    assert result["portfolio_total_value"] == 1000.0


def test_momentum_allocation(now, accrual_portfolio):
    result = run_engine(accrual_portfolio, now=now)
    assert result["strategy"] == "momentum"
    assert _plan(result, "fast")["movement"] == pytest.approx(1000.0)
    assert _plan(result, "slow")["movement"] == 0.0
    # negative recent yield: no score, reason still shows the metric
    assert _plan(result, "slow")["reason"].startswith("Momentum:")


def test_empty_fund_excluded_from_allocation(now, two_fund_portfolio):
    two_fund_portfolio["funds"].append({"id": "empty", "name": "Empty", "targetPct": "50"})
    result = run_engine(two_fund_portfolio, now=now)
    empty = _plan(result, "empty")
    assert empty["movement"] == 0.0
    assert empty["score"] == 0.0
    assert sum(p["movement"] for p in result["allocation_plan"]) == pytest.approx(200.0)


def test_unknown_strategy_falls_back_to_target(now, two_fund_portfolio):
    two_fund_portfolio["strategy"] = "whatever"
    result = run_engine(two_fund_portfolio, now=now)
    assert result["strategy"] == "target"
    assert _plan(result, "b")["movement"] == pytest.approx(200.0)


def test_zero_capital_moves_nothing(now, two_fund_portfolio):
    two_fund_portfolio["capital"] = ""
    result = run_engine(two_fund_portfolio, now=now)
    assert all(p["movement"] == 0.0 for p in result["allocation_plan"])


def test_plan_from_analyses_directly(now, two_fund_portfolio):
    analyses = [analyze_fund(f, 0.1065, now, i) for i, f in enumerate(two_fund_portfolio["funds"])]
    plan = compute_allocation_plan(analyses, 200.0, "target", 1000.0)
    assert [p["movement"] for p in plan] == [0.0, pytest.approx(200.0)]


# -----------------------------------------------------------------------------
# Projections
# -----------------------------------------------------------------------------

def test_degenerate_fund_projects_to_zero(now, two_fund_portfolio):
    two_fund_portfolio["funds"].append({"id": "empty", "name": "Empty"})
    result = run_engine(two_fund_portfolio, now=now)
    proj = _fund(result, "empty")["projections"]
    for scenario in ("current", "after_capital"):
        for regime in ("historical", "recent"):
            assert all(v == 0.0 for v in proj[scenario][regime].values())


def test_portfolio_projection_is_sum_of_funds(now, accrual_portfolio):
    result = run_engine(accrual_portfolio, now=now)
    funds = result["calculated_funds"]

    for scenario in ("current", "after_capital"):
        for regime in ("historical", "recent"):
            for periods in (6, 12, 24):
                expected = sum(f["projections"][scenario][regime][periods] for f in funds)
                assert result["projections"][scenario][regime][periods] == pytest.approx(expected)

    fast = _fund(result, "fast")
    assert fast["projections"]["after_capital"]["recent"][24] == pytest.approx(
        (fast["current_value"] + fast["movement"]) * (1 + fast["rw_last"]) ** 104
    )


def test_implied_speed_uses_after_capital_base(now, accrual_portfolio):
    result = run_engine(accrual_portfolio, now=now)
    total = result["portfolio_total_value"]
    after = total + result["capital"]

    assert result["implied_speeds"]["current"]["historical"] == pytest.approx(
        calc_implied_speed(total, result["projections"]["current"]["historical"][24], 104)
    )
    assert result["implied_speeds"]["after_capital"]["recent"] == pytest.approx(
        calc_implied_speed(after, result["projections"]["after_capital"]["recent"][24], 104)
    )


def test_time_to_target(now, two_fund_portfolio):
    result = run_engine(two_fund_portfolio, now=now)
    ttm = result["time_to_target"]
    # zero declared returns: never reaches the target
    assert ttm["current"]["historical"]["weeks"] is None
    assert ttm["current"]["historical"]["label"] == "--"
    assert ttm["current"]["benchmark"]["weeks"] > 0

    reached = run_engine(two_fund_portfolio, now=now, target_value=500.0)["time_to_target"]
    assert reached["current"]["recent"]["reached"] is True
    assert reached["current"]["recent"]["label"] == "reached"


# -----------------------------------------------------------------------------
# Purity
# -----------------------------------------------------------------------------

def test_run_engine_is_idempotent_and_does_not_mutate_input(now, accrual_portfolio):
    snapshot = copy.deepcopy(accrual_portfolio)
    first = run_engine(accrual_portfolio, now=now)
    second = run_engine(accrual_portfolio, now=now)

    assert accrual_portfolio == snapshot
    for key in ("portfolio_total_value", "portfolio_total_return", "global_risk", "allocation_plan",
                "projections", "implied_speeds", "time_to_target", "dates", "years"):
        assert first[key] == second[key]
    assert first["equity_series"].equals(second["equity_series"])
    assert first["invested_series"].equals(second["invested_series"])


def test_empty_portfolio(now):
    result = run_engine({}, now=now)
    assert result["portfolio_total_value"] == 0.0
    assert result["calculated_funds"] == []
    assert result["global_risk"] is None
    assert result["portfolio_return_pct"] is None
    assert result["target_compliant"] is False
    assert (result["equity_series"] == 0.0).all()
