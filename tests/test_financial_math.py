import math

import pandas as pd
import pytest

from financial_math import (
    parse_date,
    get_balance_at_date,
    expand_balance_points_daily,
    weekly_rate_from_return,
    period_benchmark_return,
    weekly_benchmark_rate,
    population_std,
    classify_risk,
    fv_weekly,
    calc_implied_speed,
    weeks_to_target,
    period_label,
    compute_period_return,
    get_period_window,
    value_at,
    filter_series_by_period,
)

T1 = pd.Timestamp("2024-01-01")
T2 = pd.Timestamp("2024-01-11")


def _daily(start, values):
    return pd.Series(values, index=pd.date_range(start, periods=len(values), freq="D"), dtype=float)


# -----------------------------------------------------------------------------
# Dates
# -----------------------------------------------------------------------------

def test_parse_date_accepts_iso_and_rejects_garbage():
    assert parse_date("2024-03-05") == pd.Timestamp("2024-03-05")
    assert parse_date("") is None
    assert parse_date(None) is None
    assert parse_date("not a date") is None


def test_parse_date_drops_timezone():
    ts = parse_date("2024-03-05T12:00:00Z")
    assert ts.tzinfo is None
    assert ts == pd.Timestamp("2024-03-05 12:00:00")


# -----------------------------------------------------------------------------
# Interpolation
# -----------------------------------------------------------------------------

def test_balance_interpolation_is_exact():
    points = [(T1, 10.0), (T2, 20.0)]
    assert get_balance_at_date(points, pd.Timestamp("2024-01-06")) == pytest.approx(15.0)
    assert get_balance_at_date(points, T1) == 10.0
    assert get_balance_at_date(points, T1 - pd.Timedelta(days=1)) is None
    assert get_balance_at_date(points, T2) == 20.0
    assert get_balance_at_date(points, T2 + pd.Timedelta(days=30)) == 20.0


def test_balance_interpolation_sorts_input_and_handles_empty():
    assert get_balance_at_date([(T2, 20.0), (T1, 10.0)], pd.Timestamp("2024-01-06")) == pytest.approx(15.0)
    assert get_balance_at_date([], T1) is None


def test_equal_dates_later_point_wins():
    points = [(T1, 10.0), (T1, 15.0), (T2, 20.0)]
    assert get_balance_at_date(points, T1) == 15.0


def test_expansion_is_daily_from_first_midnight():
    series = expand_balance_points_daily([(T1 + pd.Timedelta(hours=12), 10.0), (T2, 20.0)], end_date=T2)
    # the first midnight precedes the first snapshot and has no value
    assert T1 not in series.index
    assert series.index[0] == pd.Timestamp("2024-01-02")
    assert series.index[-1] == T2
    assert len(series) == 10
    assert series.loc[pd.Timestamp("2024-01-02")] == pytest.approx(10.0 + 10.0 * 12 / 228)


def test_expansion_is_capped():
    start = pd.Timestamp("1960-01-01")
    series = expand_balance_points_daily([(start, 100.0)], end_date=start + pd.Timedelta(days=20000))
    assert len(series) <= 10000


def test_expansion_empty_input():
    assert expand_balance_points_daily([]).empty


# -----------------------------------------------------------------------------
# Yields
# -----------------------------------------------------------------------------

def test_weekly_rate_round_trip():
    assert weekly_rate_from_return(0.1, 7) == pytest.approx(0.10)


def test_weekly_rate_non_real_is_zero():
    assert weekly_rate_from_return(-2.0, 14) == 0.0
    assert weekly_rate_from_return(0.1, 0) == 0.0


def test_benchmark_rates():
    assert period_benchmark_return(0.10, 365) == pytest.approx(0.10)
    assert (1 + weekly_benchmark_rate(0.10)) ** 52 == pytest.approx(1.10)


def test_population_std_and_risk_buckets():
    assert population_std([0.01]) is None
    assert population_std([0.01, 0.03]) == pytest.approx(0.01)
    assert classify_risk(0.0005) == "low"
    assert classify_risk(0.002) == "moderate"
    assert classify_risk(0.003) == "high"


# -----------------------------------------------------------------------------
# Projections
# -----------------------------------------------------------------------------

def test_fv_and_implied_speed():
    final = fv_weekly(100.0, 0.01, 104)
    assert final == pytest.approx(100.0 * 1.01 ** 104)
    assert calc_implied_speed(100.0, final, 104) == pytest.approx(0.01)
    assert calc_implied_speed(0.0, final, 104) == 0.0


def test_weeks_to_target():
    assert weeks_to_target(500_000, 0.01, 1_000_000) == pytest.approx(math.log(2) / math.log(1.01))
    assert weeks_to_target(1_000_000, 0.01, 1_000_000) == 0.0
    assert weeks_to_target(500_000, 0.0, 1_000_000) is None
    assert weeks_to_target(0.0, 0.01, 1_000_000) is None


# -----------------------------------------------------------------------------
# Period return
# -----------------------------------------------------------------------------

def test_period_return_base_rule():
    idx = pd.DatetimeIndex([T1, T2])
    equity = pd.Series([1000.0, 1200.0], index=idx)

    flat = compute_period_return(equity, pd.Series([1000.0, 1000.0], index=idx))
    assert flat["period_return_pct"] == pytest.approx(0.2)
    assert flat["period_return"] == pytest.approx(200.0)

    funded = compute_period_return(equity, pd.Series([1000.0, 1100.0], index=idx))
    assert funded["period_return_pct"] == pytest.approx(1200.0 / 1100.0 - 1)


def test_period_return_undefined_base_is_none():
    idx = pd.DatetimeIndex([T1, T2])
    result = compute_period_return(pd.Series([0.0, 50.0], index=idx), pd.Series([0.0, 0.0], index=idx))
    assert result["period_return_pct"] is None
    assert result["period_return"] is None


def test_period_labels():
    assert period_label(T1, T1 + pd.Timedelta(days=10)) == "10d"
    assert period_label(T1, T1 + pd.Timedelta(days=90)) == "3m"
    assert period_label(T1, T1 + pd.Timedelta(days=730)) == "2.0a"


# -----------------------------------------------------------------------------
# Windows
# -----------------------------------------------------------------------------

def test_period_windows(now):
    start, end = get_period_window("2023", now)
    assert start == pd.Timestamp("2023-01-01")
    assert end.date() == pd.Timestamp("2023-12-31").date()

    assert get_period_window("6m", now) == (pd.Timestamp("2024-01-01 12:00:00"), None)
    assert get_period_window("90D", now) == (now - pd.Timedelta(days=90), None)
    assert get_period_window("YTD", now) == (pd.Timestamp("2024-01-01"), None)
    assert get_period_window("MAX", now) == (None, None)
    assert get_period_window("bogus", now) == (None, None)

    start, end = get_period_window("CUSTOM:2024-02-01:2024-02-29", now)
    assert start == pd.Timestamp("2024-02-01")
    assert end.date() == pd.Timestamp("2024-02-29").date()


def test_value_at_linear_and_step():
    series = pd.Series([100.0, 200.0], index=pd.DatetimeIndex([T1, T2]))
    mid = pd.Timestamp("2024-01-06")
    assert value_at(series, mid, "linear") == pytest.approx(150.0)
    assert value_at(series, mid, "step") == 100.0
    assert value_at(series, T1 - pd.Timedelta(days=1)) is None


def test_filter_reanchors_window_start():
    # 1000 growing 10/day for 31 days, no contributions
    equity = _daily("2024-01-01", [1000.0 + 10 * i for i in range(31)])
    invested = _daily("2024-01-01", [1000.0] * 31)

    token = "CUSTOM:2024-01-10:2024-01-20"
    eq = filter_series_by_period(equity, token, method="linear")
    inv = filter_series_by_period(invested, token, method="step")

    assert eq.index[0] == pd.Timestamp("2024-01-10")
    assert eq.iloc[0] == pytest.approx(1090.0)
    assert eq.iloc[-1] == pytest.approx(1200.0, abs=1e-3)
    assert inv.iloc[0] == 1000.0

    result = compute_period_return(eq, inv)
    assert result["period_return_pct"] == pytest.approx(1200.0 / 1090.0 - 1, abs=1e-6)


def test_rolling_window_with_contribution_before_and_inside():
    # 1000 invested on Jan 1, 500 more on Mar 15, equity gains 2/day throughout
    days = pd.date_range("2024-01-01", "2024-03-31", freq="D")
    invested_values = [1500.0 if d >= pd.Timestamp("2024-03-15") else 1000.0 for d in days]
    equity = pd.Series([v + 2 * i for i, v in enumerate(invested_values)], index=days)
    invested = pd.Series(invested_values, index=days)
    now = pd.Timestamp("2024-03-31 12:00")

    eq = filter_series_by_period(equity, "1M", now, method="linear")
    inv = filter_series_by_period(invested, "1M", now, method="step")

    start = pd.Timestamp("2024-02-29 12:00")
    assert eq.index[0] == start and inv.index[0] == start
    assert eq.iloc[0] == pytest.approx(1000.0 + 2 * 59.5)
    assert inv.iloc[0] == 1000.0
    assert inv.iloc[-1] == 1500.0

    # the Mar 15 contribution joins the base instead of counting as gain
    result = compute_period_return(eq, inv)
    base = 1119.0 + 500.0
    assert result["period_return"] == pytest.approx(1680.0 - base)
    assert result["period_return_pct"] == pytest.approx(1680.0 / base - 1)


def test_filter_with_window_before_data_keeps_series():
    equity = _daily("2024-06-01", [1.0, 2.0, 3.0])
    assert filter_series_by_period(equity, "MAX").equals(equity)
    # window starting before the data: nothing to anchor
    assert len(filter_series_by_period(equity, "YTD", now=pd.Timestamp("2024-06-10"))) == 3
