import numpy as np
import pandas as pd

from config import (
    MAX_EXPANSION_DAYS,
    PROJECTION_HORIZONS,
    STRATEGIES,
    TARGET_PORTFOLIO_VALUE,
    TARGET_SUM_TOLERANCE,
)
from financial_math import (
    ONE_DAY,
    parse_date,
    expand_balance_points_daily,
    weekly_rate_from_return,
    period_benchmark_return,
    weekly_benchmark_rate,
    population_std,
    classify_risk,
    fv_weekly,
    calc_implied_speed,
    weeks_to_target,
    compute_period_return,
)
from report_formatting import parse_brl, parse_rate, fmt_brl, fmt_pp, fmt_time_from_weeks

REGIMES = ("historical", "recent")
SCENARIOS = ("current", "after_capital")


# ------------------------------------------------------------
# Per-fund analysis
# ------------------------------------------------------------

def _empty_series() -> pd.Series:
    return pd.Series(dtype=float, index=pd.DatetimeIndex([]))


def _accrued_equity_series(timeline: list, now: pd.Timestamp) -> pd.Series:
    """
    Daily equity for a fund without balance snapshots: each contribution
    accrues its declared return linearly from its date until now.
    """
    start = min(c["date"] for c in timeline).normalize()
    n_days = min(MAX_EXPANSION_DAYS, (now.normalize() - start).days + 1)
    if n_days <= 0:
        return _empty_series()

    days = pd.date_range(start, periods=n_days, freq="D")
    equity = np.zeros(len(days))

    for c in timeline:
        span = (now - c["date"]) / ONE_DAY
        slope = c["return"] / span if span > 0 else 0.0
        elapsed = np.asarray((days - c["date"]) / ONE_DAY, dtype=float)
        equity += np.where(elapsed >= 0, c["value"] + slope * elapsed, 0.0)

    return pd.Series(equity, index=days, dtype=float)


def _cumulative_invested(timeline: list, index: pd.DatetimeIndex) -> pd.Series:
    """Step function: total contributed on or before each index point."""
    if not timeline:
        return pd.Series(0.0, index=index, dtype=float)

    events = pd.Series(
        [c["value"] for c in timeline],
        index=pd.DatetimeIndex([c["date"] for c in timeline]),
        dtype=float,
    ).sort_index()
    cumulative = events.cumsum().to_numpy()

    pos = events.index.searchsorted(index, side="right")
    values = np.where(pos > 0, cumulative[np.maximum(pos - 1, 0)], 0.0)
    return pd.Series(values, index=index, dtype=float)


def build_fund_series(
    timeline: list,
    balance_points: list,
    current_value: float,
    now: pd.Timestamp,
):
    """
    Daily (equity, invested) series for one fund.

    Both start with a zero point the day before the first record and end with
    a point at `now` carrying the current value. Equity follows the daily
    interpolated balances when snapshots exist, otherwise linear accrual of
    each contribution's return.
    """
    if not timeline and not balance_points:
        return _empty_series(), _empty_series()

    if balance_points:
        points = sorted(balance_points, key=lambda p: p[0])
        if timeline:
            # Start the curve at the first contribution, not the first manual balance
            first_date = min(c["date"] for c in timeline)
            if points[0][0] > first_date:
                seed = sum(c["value"] for c in timeline if c["date"] <= first_date)
                points.insert(0, (first_date, seed))
        equity = expand_balance_points_daily(points, now)
    else:
        equity = _accrued_equity_series(timeline, now)

    if equity.empty:
        return _empty_series(), _empty_series()

    equity = equity.copy()
    equity.loc[equity.index[0] - ONE_DAY] = 0.0
    equity.loc[now] = current_value
    equity = equity.sort_index()

    invested = _cumulative_invested(timeline, equity.index)
    return equity, invested


def analyze_fund(fund: dict, benchmark_annual: float, now: pd.Timestamp, position: int = 0) -> dict:
    """
    Value, yield and risk metrics for one fund.

    Invalid contributions (value <= 0 or no parseable date) are kept in the
    enriched list flagged valid=False and excluded from every aggregate.
    """
    benchmark_week = weekly_benchmark_rate(benchmark_annual)

    invested_total = 0.0
    declared_return = 0.0
    speeds = []
    timeline = []
    enriched = []
    dates = set()
    first = None
    last = None

    for raw in fund.get("contributions") or []:
        value = parse_brl(raw.get("value"))
        ret = parse_brl(raw.get("return"))
        date_str = raw.get("date")
        d = parse_date(date_str)

        row = {"valid": False, "value": value, "return": ret, "date": date_str}

        if value > 0 and d is not None:
            days_elapsed = max((now - d) / ONE_DAY, 1.0)
            row_yield = ret / value
            yield_per_week = weekly_rate_from_return(row_yield, days_elapsed)

            period_bench = period_benchmark_return(benchmark_annual, days_elapsed)
            pct_bench = row_yield / period_bench if abs(period_bench) > 0 else 0.0

            invested_total += value
            declared_return += ret
            speeds.append(yield_per_week)
            timeline.append({"date": d, "value": value, "return": ret})
            dates.add(d.normalize())

            # Strict comparisons keep the earliest input row on equal dates
            if last is None or d > last["date"]:
                last = {"date": d, "yield_per_week": yield_per_week, "value": value, "return": ret}
            if first is None or d < first["date"]:
                first = {"date": d, "yield_per_week": yield_per_week, "value": value, "return": ret}

            row.update({
                "valid": True,
                "total_value": value + ret,
                "days_elapsed": days_elapsed,
                "row_yield": row_yield,
                "yield_per_week": yield_per_week,
                "pct_bench": pct_bench,
                "beats_benchmark": yield_per_week >= benchmark_week,
            })
        enriched.append(row)

    balance_points = []
    balances = []
    for raw in fund.get("balances") or []:
        value = parse_brl(raw.get("value"))
        d = parse_date(raw.get("date"))
        valid = value > 0 and d is not None
        balances.append({"valid": valid, "value": value, "date": raw.get("date")})
        if valid:
            balance_points.append((d, value))
            dates.add(d.normalize())
    balance_points.sort(key=lambda p: p[0])

    current_value = invested_total + declared_return
    realized_return = declared_return
    if balance_points:
        current_value = balance_points[-1][1]
        realized_return = current_value - invested_total

    risk = population_std(speeds)
    if risk is None:
        risk_label = "insufficient data"
    elif risk > 0:
        risk_label = classify_risk(risk)
    else:
        risk_label = "none"

    equity_series, invested_series = build_fund_series(timeline, balance_points, current_value, now)

    return {
        "id": fund.get("id") or f"fund-{position}",
        "name": fund.get("name") or f"Fund {position + 1}",
        "enabled": bool(fund.get("enabled", True)),
        "target_pct": parse_brl(fund.get("targetPct")),
        "current_value": current_value,
        "invested_total": invested_total,
        "realized_return": realized_return,
        "contributions": enriched,
        "timeline": sorted(timeline, key=lambda c: c["date"]),
        "balances": balances,
        "balance_points": balance_points,
        "first_contribution": first,
        "last_contribution": last,
        "rw_first": first["yield_per_week"] if first else 0.0,
        "rw_last": last["yield_per_week"] if last else 0.0,
        "risk": risk,
        "risk_label": risk_label,
        "has_data": bool(timeline or balance_points),
        "dates": dates,
        "equity_series": equity_series,
        "invested_series": invested_series,
    }


# ------------------------------------------------------------
# Aggregation
# ------------------------------------------------------------

def summary_return(current_value: float, invested: float, now: pd.Timestamp) -> dict:
    """Total return badge: the period-return formula on a 0 -> now span."""
    start = now - pd.Timedelta(milliseconds=1)
    index = pd.DatetimeIndex([start, now])
    return compute_period_return(
        pd.Series([0.0, current_value], index=index),
        pd.Series([0.0, invested], index=index),
    )


def allocation_deviation(current_pct: float, target_pct: float):
    """(deviation in points, judgement) of a fund's share against its target."""
    if target_pct <= 0:
        return None, None

    deviation = current_pct - target_pct
    size = abs(deviation)
    if size < 1:
        label = "ideal"
    elif size < 5:
        label = "marginal"
    elif size < 10:
        label = "overweight" if deviation > 0 else "underweight"
    else:
        label = "rebalance"
    return deviation, label


def aggregate_risk(funds: list, total_value: float):
    """
    Value-weighted weekly-yield deviation. Funds whose risk cannot be measured
    add nothing to the numerator but still count in the portfolio total.
    """
    weighted = [(f["risk"], f["current_value"]) for f in funds if f["risk"]]
    if not weighted or total_value <= 0:
        return None

    value = sum(r * w for r, w in weighted) / total_value
    return {"value": value, "label": classify_risk(value)}


def build_portfolio_series(funds: list, dates: set, now: pd.Timestamp):
    """
    Portfolio equity and invested series: sum of fund series on a daily index
    running from the day before the earliest record to now.
    """
    today = now.normalize()
    start = min(dates).normalize() if dates else today
    start = max(start, today - pd.Timedelta(days=MAX_EXPANSION_DAYS - 1))

    index = pd.DatetimeIndex([start - ONE_DAY]).append(pd.date_range(start, today, freq="D"))
    if now not in index:
        index = index.append(pd.DatetimeIndex([now]))

    equity = pd.Series(0.0, index=index, dtype=float)
    invested = pd.Series(0.0, index=index, dtype=float)

    for f in funds:
        if f["equity_series"].empty:
            continue
        equity += f["equity_series"].reindex(index).ffill().fillna(0.0)
        invested += f["invested_series"].reindex(index).ffill().fillna(0.0)

    return equity, invested


# ------------------------------------------------------------
# Allocation planner
# ------------------------------------------------------------

def compute_allocation_plan(funds: list, capital: float, strategy: str, portfolio_total: float) -> list:
    """
    Split `capital` across enabled funds proportionally to their score.

      target:   score = max(0, (total + capital) * target% - current value)
      momentum: score = max(0, most recent weekly yield)

    Funds without any valid record are not scored. One pass, no iteration.
    """
    scored = []
    for f in funds:
        eligible = f["enabled"] and f["has_data"]
        score = 0.0
        deficit = 0.0
        if eligible:
            if strategy == "momentum":
                if f["last_contribution"] is not None:
                    score = max(0.0, f["last_contribution"]["yield_per_week"])
            else:
                ideal = (portfolio_total + capital) * (f["target_pct"] / 100.0)
                deficit = max(0.0, ideal - f["current_value"])
                score = deficit
        scored.append((f, eligible, score, deficit))

    total_score = sum(score for _, _, score, _ in scored)

    plan = []
    for f, eligible, score, deficit in scored:
        movement = 0.0
        reason = ""
        if eligible and total_score > 0:
            if strategy == "momentum" and f["last_contribution"] is not None:
                movement = capital * (score / total_score)
                reason = f"Momentum: {fmt_pp(f['last_contribution']['yield_per_week'])}"
            elif strategy == "target" and deficit > 0:
                movement = capital * (deficit / total_score)
                reason = f"Target deficit: {fmt_brl(deficit)}"

        plan.append({
            "fund_id": f["id"],
            "name": f["name"],
            "enabled": f["enabled"],
            "score": score,
            "deficit": deficit,
            "movement": movement,
            "reason": reason,
        })
    return plan


# ------------------------------------------------------------
# Projections
# ------------------------------------------------------------

def compute_projections(current_value: float, rw_first: float, rw_last: float, movement: float) -> dict:
    """Value at each horizon for {current, after_capital} x {historical, recent}."""
    rates = {"historical": rw_first, "recent": rw_last}
    bases = {"current": current_value, "after_capital": current_value + movement}
    return {
        scenario: {
            regime: {
                periods: fv_weekly(bases[scenario], rates[regime], weeks)
                for periods, weeks in PROJECTION_HORIZONS.items()
            }
            for regime in REGIMES
        }
        for scenario in SCENARIOS
    }


def sum_projections(projection_sets: list) -> dict:
    total = {
        scenario: {regime: {periods: 0.0 for periods in PROJECTION_HORIZONS} for regime in REGIMES}
        for scenario in SCENARIOS
    }
    for proj in projection_sets:
        for scenario in SCENARIOS:
            for regime in REGIMES:
                for periods in PROJECTION_HORIZONS:
                    total[scenario][regime][periods] += proj[scenario][regime][periods]
    return total


def time_to_target(value: float, weekly_rate: float, target: float) -> dict:
    weeks = weeks_to_target(value, weekly_rate, target)
    reached = weeks == 0.0
    if reached:
        label = "reached"
    else:
        label = fmt_time_from_weeks(weeks)
    return {"weeks": weeks, "reached": reached, "label": label}


# ------------------------------------------------------------
# Main engine
# ------------------------------------------------------------

def run_engine(portfolio: dict, now=None, target_value: float = TARGET_PORTFOLIO_VALUE) -> dict:
    """
    Full valuation pipeline for one portfolio document.

    Pure: the output depends only on `portfolio` and `now` (default: the
    current wall-clock time). Input money/percent fields may be locale
    strings; see report_formatting.parse_brl / parse_rate.
    """
    now = pd.Timestamp(now) if now is not None else pd.Timestamp.now()
    if now.tzinfo is not None:
        now = now.tz_convert(None)

    capital = parse_brl(portfolio.get("capital"))
    benchmark_annual = parse_rate(portfolio.get("benchmarkAnnualRate"))
    benchmark_week = weekly_benchmark_rate(benchmark_annual)

    strategy = str(portfolio.get("strategy") or "target").strip().lower()
    if strategy not in STRATEGIES:
        strategy = "target"

    # ------ Per-fund analysis ------
    analyses = [
        analyze_fund(fund, benchmark_annual, now, position=i)
        for i, fund in enumerate(portfolio.get("funds") or [])
    ]

    total_value = sum(f["current_value"] for f in analyses)
    total_invested = sum(f["invested_total"] for f in analyses)
    total_target = sum(f["target_pct"] for f in analyses if f["enabled"])

    dates = {now.normalize()}
    for f in analyses:
        dates |= f["dates"]

    # ------ Allocation + projections ------
    plan = compute_allocation_plan(analyses, capital, strategy, total_value)

    calculated_funds = []
    for f, step in zip(analyses, plan):
        current_pct = (f["current_value"] / total_value * 100.0) if total_value > 0 else 0.0
        deviation, deviation_label = allocation_deviation(current_pct, f["target_pct"])
        badge = summary_return(f["current_value"], f["invested_total"], now)

        calculated_funds.append({
            **f,
            "allocation_pct": current_pct,
            "deviation": deviation,
            "deviation_label": deviation_label,
            "total_return": badge["period_return"],
            "total_return_pct": badge["period_return_pct"],
            "score": step["score"],
            "deficit": step["deficit"],
            "movement": step["movement"],
            "reason": step["reason"],
            "projections": compute_projections(f["current_value"], f["rw_first"], f["rw_last"], step["movement"]),
            "time_to_target": {
                "historical": time_to_target(f["current_value"], f["rw_first"], target_value),
                "recent": time_to_target(f["current_value"], f["rw_last"], target_value),
            },
        })

    projections = sum_projections([f["projections"] for f in calculated_funds])

    longest = max(PROJECTION_HORIZONS)
    weeks = PROJECTION_HORIZONS[longest]
    after_value = total_value + capital
    implied_speeds = {
        "current": {
            regime: calc_implied_speed(total_value, projections["current"][regime][longest], weeks)
            for regime in REGIMES
        },
        "after_capital": {
            regime: calc_implied_speed(after_value, projections["after_capital"][regime][longest], weeks)
            for regime in REGIMES
        },
    }

    ttm = {
        "current": {
            regime: time_to_target(total_value, implied_speeds["current"][regime], target_value)
            for regime in REGIMES
        },
        "after_capital": {
            regime: time_to_target(after_value, implied_speeds["after_capital"][regime], target_value)
            for regime in REGIMES
        },
    }
    ttm["current"]["benchmark"] = time_to_target(total_value, benchmark_week, target_value)
    ttm["after_capital"]["benchmark"] = time_to_target(after_value, benchmark_week, target_value)

    equity_series, invested_series = build_portfolio_series(calculated_funds, dates, now)
    badge = summary_return(total_value, total_invested, now)

    sorted_dates = sorted(dates)
    return {
        "as_of": now,
        "capital": capital,
        "strategy": strategy,
        "benchmark_annual_rate": benchmark_annual,
        "benchmark_weekly_rate": benchmark_week,
        "target_value": target_value,
        "portfolio_total_value": total_value,
        "portfolio_total_invested": total_invested,
        "portfolio_total_return": badge["period_return"],
        "portfolio_return_pct": badge["period_return_pct"],
        "total_target_pct": total_target,
        "target_compliant": abs(total_target - 100.0) < TARGET_SUM_TOLERANCE,
        "calculated_funds": calculated_funds,
        "global_risk": aggregate_risk(calculated_funds, total_value),
        "allocation_plan": plan,
        "projections": projections,
        "implied_speeds": implied_speeds,
        "time_to_target": ttm,
        "dates": sorted_dates,
        "years": sorted({d.year for d in sorted_dates}, reverse=True),
        "equity_series": equity_series,
        "invested_series": invested_series,
    }
