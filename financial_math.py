import math
import re

import numpy as np
import pandas as pd

from config import MAX_EXPANSION_DAYS, RISK_LOW_THRESHOLD, RISK_MODERATE_THRESHOLD

# ============================================================
# CONFIG / CONSTANTS
# ============================================================
ONE_DAY = pd.Timedelta(days=1)
END_OF_DAY = pd.Timedelta(hours=23, minutes=59, seconds=59, milliseconds=999)

# Quick-select chart windows (years and CUSTOM ranges are built on demand)
PERIOD_FILTERS = ["1M", "3M", "6M", "12M", "YTD", "MAX"]

_ROLLING_FILTER = re.compile(r"^(\d+)([MD])$")
_YEAR_FILTER = re.compile(r"^\d{4}$")


def parse_date(value):
    """Return a naive pd.Timestamp, or None when `value` is empty/unparseable."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        ts = pd.to_datetime(value, errors="coerce")
    except (TypeError, ValueError):
        return None
    if ts is None or pd.isna(ts):
        return None
    ts = pd.Timestamp(ts)
    if ts.tzinfo is not None:
        ts = ts.tz_convert(None)
    return ts


# ------------------------------------------------------------
# Balance interpolation
# ------------------------------------------------------------

def _interpolate_sorted(points: list, target: pd.Timestamp):
    if target < points[0][0]:
        return None
    if target >= points[-1][0]:
        return points[-1][1]

    for (t1, v1), (t2, v2) in zip(points[:-1], points[1:]):
        if t1 <= target <= t2:
            if t2 == t1:
                return v2
            ratio = (target - t1) / (t2 - t1)
            return v1 + (v2 - v1) * ratio

    return None


def get_balance_at_date(balance_points: list, target_date: pd.Timestamp):
    """
    Balance of a fund at `target_date` from sparse (date, value) snapshots.

      - before the first snapshot: None (no data yet)
      - at or after the last snapshot: the last value
      - in between: linear interpolation between the two surrounding points
        (equal dates -> the later point's value)
    """
    if not balance_points:
        return None
    points = sorted(balance_points, key=lambda p: p[0])
    return _interpolate_sorted(points, pd.Timestamp(target_date))


def expand_balance_points_daily(
    balance_points: list,
    end_date: pd.Timestamp = None,
    max_days: int = MAX_EXPANSION_DAYS,
) -> pd.Series:
    """
    Expand sparse snapshots into one interpolated value per calendar day.

    Days run from the first snapshot's day (midnight) through `end_date`
    (default: now). Days with no defined value are omitted. Never yields more
    than `max_days` points. The result is in-memory only.
    """
    if not balance_points:
        return pd.Series(dtype=float)

    points = sorted(balance_points, key=lambda p: p[0])
    end = pd.Timestamp(end_date) if end_date is not None else pd.Timestamp.now()

    start = points[0][0].normalize()
    n_days = min(int(max_days), (end.normalize() - start).days + 1)
    if n_days <= 0:
        return pd.Series(dtype=float)

    days = pd.date_range(start, periods=n_days, freq="D")
    values = {}
    for day in days:
        value = _interpolate_sorted(points, day)
        if value is not None:
            values[day] = float(value)

    return pd.Series(values, dtype=float)


# ------------------------------------------------------------
# Yield helpers (weekly compounding)
# ------------------------------------------------------------

def weekly_rate_from_return(row_yield: float, days_elapsed: float) -> float:
    """
    Constant weekly rate implied by a cumulative return over `days_elapsed`:
        (1 + row_yield) ** (1 / weeks) - 1
    Non-real or non-finite results are coerced to 0.0.
    """
    weeks = days_elapsed / 7.0
    base = 1.0 + row_yield
    if weeks <= 0 or base < 0:
        return 0.0
    try:
        rate = base ** (1.0 / weeks) - 1.0
    except OverflowError:
        return 0.0
    return rate if math.isfinite(rate) else 0.0


def period_benchmark_return(annual_rate: float, days_elapsed: float) -> float:
    """Benchmark's compounded return over `days_elapsed` (365-day year)."""
    base = 1.0 + annual_rate
    if base < 0:
        return 0.0
    try:
        value = base ** (days_elapsed / 365.0) - 1.0
    except OverflowError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def weekly_benchmark_rate(annual_rate: float) -> float:
    base = 1.0 + annual_rate
    if base < 0:
        return 0.0
    return base ** (1.0 / 52.0) - 1.0


def population_std(samples: list):
    """Population standard deviation; None with fewer than 2 samples."""
    if len(samples) < 2:
        return None
    return float(np.std(np.asarray(samples, dtype=float), ddof=0))


def classify_risk(weekly_std: float) -> str:
    if weekly_std < RISK_LOW_THRESHOLD:
        return "low"
    if weekly_std < RISK_MODERATE_THRESHOLD:
        return "moderate"
    return "high"


# ------------------------------------------------------------
# Future value helpers (weekly compounding)
# ------------------------------------------------------------

def fv_weekly(pv0: float, weekly_rate: float, weeks: int) -> float:
    return pv0 * ((1 + weekly_rate) ** weeks)


def calc_implied_speed(initial: float, final: float, weeks: int) -> float:
    """Single weekly rate taking `initial` to `final` in `weeks`; 0.0 if undefined."""
    if weeks <= 0 or initial <= 0 or final <= 0:
        return 0.0
    return (final / initial) ** (1.0 / weeks) - 1.0


def weeks_to_target(value: float, weekly_rate: float, target: float):
    """
    Weeks of compounding at `weekly_rate` for `value` to reach `target`.
    Returns 0.0 when already reached and None when it never gets there.
    """
    if value >= target:
        return 0.0
    if weekly_rate <= 0 or value <= 0:
        return None
    return math.log(target / value) / math.log(1 + weekly_rate)


# ------------------------------------------------------------
# Period return (net of contributions)
# ------------------------------------------------------------

def period_label(start: pd.Timestamp, end: pd.Timestamp) -> str:
    days = math.floor((end - start) / ONE_DAY)
    if days <= 31:
        return f"{days}d"
    if days <= 365:
        return f"{math.floor(days / 30 + 0.5)}m"
    return f"{days / 365:.1f}a"


def compute_period_return(equity: pd.Series, invested: pd.Series) -> dict:
    """
    Return over the span of two time-ordered series:

        base   = equity_start + (invested_end - invested_start)
        return = equity_end / base - 1        (only when base > 0)

    Money added during the window is part of the base, so new contributions
    never count as gains. Undefined results are None, not zero.
    """
    result = {"period_return_pct": None, "period_return": None, "period_label": ""}

    if equity is None or invested is None or len(equity) < 2 or len(invested) < 2:
        return result

    equity = equity.sort_index()
    invested = invested.sort_index()

    start_equity = float(equity.iloc[0])
    end_equity = float(equity.iloc[-1])
    contributions = float(invested.iloc[-1]) - float(invested.iloc[0])
    base = start_equity + contributions

    if base > 0:
        result["period_return_pct"] = end_equity / base - 1.0
        result["period_return"] = end_equity - base

    result["period_label"] = period_label(equity.index[0], equity.index[-1])
    return result


# ------------------------------------------------------------
# Chart windows with boundary re-anchoring
# ------------------------------------------------------------

def get_period_window(filter_type, now: pd.Timestamp = None):
    """
    Map a filter token to a (start, end) window. (None, None) means the full
    range: "MAX", empty or unrecognised tokens.

      "2024"                      -> calendar year
      "6M" / "90D"                -> rolling months / days back from now
      "YTD"                       -> Jan 1 of now's year
      "CUSTOM:2024-01-01:2024-06-30"
    """
    now = pd.Timestamp(now) if now is not None else pd.Timestamp.now()
    token = str(filter_type or "").strip().upper()

    if not token or token == "MAX":
        return None, None

    if _YEAR_FILTER.match(token):
        year = int(token)
        return pd.Timestamp(year=year, month=1, day=1), pd.Timestamp(year=year, month=12, day=31) + END_OF_DAY

    if token.startswith("CUSTOM:"):
        parts = token.split(":")
        if len(parts) != 3:
            return None, None
        start, end = parse_date(parts[1]), parse_date(parts[2])
        if start is None or end is None:
            return None, None
        return start.normalize(), end.normalize() + END_OF_DAY

    if token == "YTD":
        return pd.Timestamp(year=now.year, month=1, day=1), None

    match = _ROLLING_FILTER.match(token)
    if match:
        n, unit = int(match.group(1)), match.group(2)
        if unit == "M":
            return now - pd.DateOffset(months=n), None
        return now - pd.Timedelta(days=n), None

    return None, None


def value_at(series: pd.Series, ts: pd.Timestamp, method: str = "linear"):
    """
    Value of a sorted series at an arbitrary instant.

    method="linear": interpolate between the surrounding points (equity).
    method="step":   hold the last known value (cumulative invested).
    None before the first point.
    """
    prior = series[series.index <= ts]
    if prior.empty:
        return None

    t1, v1 = prior.index[-1], float(prior.iloc[-1])
    if method == "step" or t1 == ts:
        return v1

    after = series[series.index > ts]
    if after.empty:
        return v1

    t2, v2 = after.index[0], float(after.iloc[0])
    return v1 + (v2 - v1) * ((ts - t1) / (t2 - t1))


def filter_series_by_period(
    series: pd.Series,
    filter_type,
    now: pd.Timestamp = None,
    method: str = "linear",
) -> pd.Series:
    """
    Restrict a series to a chart window.

    When the window starts after the first data point, a point is inserted at
    the exact window start holding the interpolated (or step-held) value, so
    returns are measured from the true baseline instead of the first point
    that happens to fall inside the window. Windows with an explicit end are
    closed the same way when data continues beyond it.
    """
    if series is None or series.empty:
        return series

    series = series.sort_index()
    start, end = get_period_window(filter_type, now)

    window = series
    if start is not None and start > series.index[0]:
        anchor = value_at(series, start, method)
        window = pd.concat([
            pd.Series([anchor], index=pd.DatetimeIndex([start]), dtype=float),
            series[series.index > start],
        ])

    if end is not None and end < series.index[-1]:
        closing = value_at(series, end, method)
        window = window[window.index < end]
        if closing is not None:
            window = pd.concat([
                window,
                pd.Series([closing], index=pd.DatetimeIndex([end]), dtype=float),
            ])

    return window
