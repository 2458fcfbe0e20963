import copy

import pandas as pd
import plotly.graph_objects as go

from portfolio_engine import run_engine
from data_loader import load_portfolio_document, save_portfolio_document, empty_document
from financial_math import filter_series_by_period, compute_period_return
from report_formatting import fmt_brl, fmt_pct, fmt_pp, trend_symbol
from config import GLOBAL_PALETTE, PROJECTION_HORIZONS, TARGET_PORTFOLIO_VALUE

# ============================================================
# GLOBAL DATA CACHE (Server-Side)
# ============================================================
_DATA_CACHE = None
_DOCUMENT = None

SCENARIO_LABELS = {
    ("current", "historical"): "Current / Historical",
    ("current", "recent"): "Current / Recent",
    ("after_capital", "historical"): "After Capital / Historical",
    ("after_capital", "recent"): "After Capital / Recent",
}

RISK_LABELS = {
    "low": "Low",
    "moderate": "Moderate",
    "high": "High",
    "none": "None",
    "insufficient data": "Insufficient data",
}


def get_document():
    """The portfolio document the cache was computed from."""
    global _DOCUMENT
    if _DOCUMENT is None:
        _DOCUMENT = load_portfolio_document()
    return _DOCUMENT


def get_data():
    """Retrieve cached engine output, initializing if necessary."""
    global _DATA_CACHE
    if _DATA_CACHE is None:
        _DATA_CACHE = refresh_data()
    return _DATA_CACHE


def refresh_data(document=None, now=None):
    """Re-run the engine; a new `document` replaces the cached one."""
    global _DATA_CACHE, _DOCUMENT
    if document is not None:
        _DOCUMENT = document
    _DATA_CACHE = run_engine(get_document(), now=now, target_value=TARGET_PORTFOLIO_VALUE)
    return _DATA_CACHE


RECORD_KINDS = ("contributions", "balances")


def _edit_document(apply):
    """Run `apply` on a copy of the cached document and recalculate."""
    document = copy.deepcopy(get_document() or empty_document())
    document.setdefault("funds", [])
    apply(document)
    return refresh_data(document)


def _find_fund(document, fund_id):
    for fund in document["funds"]:
        if fund.get("id") == fund_id:
            return fund
    raise KeyError(f"Unknown fund: {fund_id}")


def update_document(changes: dict, fund_id=None):
    """
    Apply edits to the cached document (portfolio level, or one fund when
    `fund_id` is given) and recalculate. Nothing is written to disk.
    """
    def apply(document):
        if fund_id is None:
            document.update(changes)
            return
        for fund in document["funds"]:
            if fund.get("id") == fund_id:
                fund.update(changes)
                break

    return _edit_document(apply)


def _next_fund_id(funds):
    used = {f.get("id") for f in funds}
    n = len(funds)
    while f"fund-{n}" in used:
        n += 1
    return f"fund-{n}"


def add_fund(name=""):
    """Append an empty, enabled fund. Returns (data, new fund id)."""
    new_id = _next_fund_id(get_document().get("funds", []))

    def apply(document):
        document["funds"].append({
            "id": new_id,
            "name": name,
            "targetPct": "",
            "enabled": True,
            "expanded": True,
            "contributions": [],
            "balances": [],
        })

    return _edit_document(apply), new_id


def remove_fund(fund_id):
    def apply(document):
        document["funds"].remove(_find_fund(document, fund_id))

    return _edit_document(apply)


def move_fund(fund_id, offset):
    """Shift a fund `offset` places in the list, clamped to its ends."""
    def apply(document):
        funds = document["funds"]
        fund = _find_fund(document, fund_id)
        position = funds.index(fund)
        target = min(max(position + offset, 0), len(funds) - 1)
        funds.insert(target, funds.pop(position))

    return _edit_document(apply)


def add_record(fund_id, kind, record: dict):
    """Append a contribution or balance row, stored as entered."""
    if kind not in RECORD_KINDS:
        raise ValueError(f"Unknown record kind: {kind}")
    keys = ("value", "return", "date") if kind == "contributions" else ("value", "date")
    row = {k: str(record.get(k) or "").strip() for k in keys}

    def apply(document):
        _find_fund(document, fund_id).setdefault(kind, []).append(row)

    return _edit_document(apply)


def remove_record(fund_id, kind, position: int):
    """Drop the row at `position` (document order) from one fund's records."""
    if kind not in RECORD_KINDS:
        raise ValueError(f"Unknown record kind: {kind}")

    def apply(document):
        rows = _find_fund(document, fund_id).get(kind) or []
        if not 0 <= position < len(rows):
            raise IndexError(f"No {kind} row at position {position}")
        del rows[position]

    return _edit_document(apply)


def reload_document():
    """Re-read the stored document, dropping unsaved edits."""
    return refresh_data(load_portfolio_document())


def save_document(path=None):
    return save_portfolio_document(get_document(), path)


def get_fund(data, fund_id):
    for fund in data["calculated_funds"]:
        if fund["id"] == fund_id:
            return fund
    return None


def get_fund_options(data):
    return [
        {"label": f["name"] or f["id"], "value": f["id"]}
        for f in data["calculated_funds"]
    ]


def get_year_options(data, fund_id=None):
    """Every year with data, newest first (one fund's years when given)."""
    if fund_id is None:
        years = data["years"]
    else:
        fund = get_fund(data, fund_id)
        years = sorted({d.year for d in fund["dates"]}, reverse=True) if fund else []
    return [{"label": str(y), "value": str(y)} for y in years]


# ============================================================
# SNAPSHOT METRICS
# ============================================================

def get_snapshot_metrics(data):
    risk = data["global_risk"]
    return {
        "total_value": data["portfolio_total_value"],
        "total_invested": data["portfolio_total_invested"],
        "total_return": data["portfolio_total_return"],
        "return_pct": data["portfolio_return_pct"],
        "risk_value": risk["value"] if risk else None,
        "risk_label": risk["label"] if risk else None,
        "total_target_pct": data["total_target_pct"],
        "target_compliant": data["target_compliant"],
        "capital": data["capital"],
        "benchmark_weekly": data["benchmark_weekly_rate"],
    }


def get_windowed_series(equity, invested, filter_value, now):
    """Filter both series to one window and measure its net return."""
    eq = filter_series_by_period(equity, filter_value, now, method="linear")
    inv = filter_series_by_period(invested, filter_value, now, method="step")
    return eq, inv, compute_period_return(eq, inv)


def get_portfolio_window(data, filter_value="MAX"):
    return get_windowed_series(data["equity_series"], data["invested_series"], filter_value, data["as_of"])


def get_fund_window(data, fund_id, filter_value="MAX"):
    fund = get_fund(data, fund_id)
    if fund is None:
        empty = pd.Series(dtype=float)
        return empty, empty, compute_period_return(empty, empty)
    return get_windowed_series(fund["equity_series"], fund["invested_series"], filter_value, data["as_of"])


# ============================================================
# CHARTS
# ============================================================

def _hex_to_rgba(hex_code, alpha=0.2):
    """Helper to convert hex to rgba string."""
    hex_code = hex_code.lstrip('#')
    return f"rgba({int(hex_code[0:2], 16)}, {int(hex_code[2:4], 16)}, {int(hex_code[4:6], 16)}, {alpha})"


def _template(theme):
    return "plotly_white" if theme == "light" else "plotly_dark"


def get_history_chart(equity, invested, show_invested=True, theme="light"):
    """Equity mountain with the cumulative invested step line on top."""
    if equity is None or equity.empty:
        return go.Figure()

    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=equity.index,
        y=equity.values,
        mode='lines',
        fill='tozeroy',
        name='Value',
        line=dict(color=GLOBAL_PALETTE[0], width=2),
        fillcolor=_hex_to_rgba(GLOBAL_PALETTE[0], 0.2),
        hovertemplate="<b>Value</b>: R$ %{y:,.2f}<extra></extra>"
    ))

    if show_invested and invested is not None and not invested.empty:
        fig.add_trace(go.Scatter(
            x=invested.index,
            y=invested.values,
            mode='lines',
            name='Invested',
            line=dict(color=GLOBAL_PALETTE[10], width=1.5, dash='dash', shape='hv'),
            hovertemplate="<b>Invested</b>: R$ %{y:,.2f}<extra></extra>"
        ))

    fig.update_layout(
        yaxis_title="Value (R$)",
        template=_template(theme),
        margin=dict(l=40, r=20, t=40, b=40),
        hovermode="x unified",
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1)
    )
    return fig


def get_allocation_charts(data, theme="light"):
    """Donut of current values and grouped bars of actual vs target share."""
    funds = [f for f in data["calculated_funds"] if f["current_value"] > 0 or f["target_pct"] > 0]
    if not funds:
        return go.Figure(), go.Figure()

    names = [f["name"] or f["id"] for f in funds]
    values = [f["current_value"] for f in funds]

    pie_fig = go.Figure(go.Pie(
        labels=names,
        values=values,
        hole=0.4,
        textinfo='percent',
        marker=dict(colors=GLOBAL_PALETTE),
        sort=False,
        direction='clockwise',
        rotation=-90,
        textfont=dict(color='black' if theme == 'light' else 'white'),
        hovertemplate="<b>%{label}</b><br>Value: R$ %{value:,.2f}<br>Share: %{percent:.2%}<extra></extra>"
    ))
    pie_fig.update_layout(
        template=_template(theme),
        margin=dict(l=20, r=20, t=40, b=20),
    )

    bar_fig = go.Figure()
    bar_fig.add_trace(go.Bar(
        x=names,
        y=[f["allocation_pct"] for f in funds],
        name="Actual %",
        marker_color=GLOBAL_PALETTE[0],
        customdata=values,
        hovertemplate="<b>Actual</b>: %{y:.2f}%<br>Value: R$ %{customdata:,.2f}<extra></extra>"
    ))
    bar_fig.add_trace(go.Bar(
        x=names,
        y=[f["target_pct"] for f in funds],
        name="Target %",
        marker_color=GLOBAL_PALETTE[1],
        hovertemplate="<b>Target</b>: %{y:.2f}%<extra></extra>"
    ))
    bar_fig.update_layout(
        barmode='group',
        yaxis_title="Percentage (%)",
        template=_template(theme),
        margin=dict(l=40, r=20, t=40, b=40)
    )
    return pie_fig, bar_fig


def get_projections_chart(data, theme="light"):
    """Portfolio value at 0/6/12/24 periods under the four scenarios."""
    projections = data["projections"]
    horizons = [0] + sorted(PROJECTION_HORIZONS)
    bases = {
        "current": data["portfolio_total_value"],
        "after_capital": data["portfolio_total_value"] + data["capital"],
    }
    colors = [GLOBAL_PALETTE[0], GLOBAL_PALETTE[4], GLOBAL_PALETTE[2], GLOBAL_PALETTE[6]]

    fig = go.Figure()
    for i, ((scenario, regime), label) in enumerate(SCENARIO_LABELS.items()):
        vals = [bases[scenario]] + [projections[scenario][regime][p] for p in horizons[1:]]
        fig.add_trace(go.Scatter(
            x=horizons, y=vals,
            mode='lines+markers',
            name=label,
            line=dict(color=colors[i], width=2, dash='dash' if scenario == "after_capital" else 'solid'),
            hovertemplate=f"<b>{label}</b>: R$ %{{y:,.2f}}<extra></extra>"
        ))

    fig.add_hline(
        y=data["target_value"],
        line=dict(color=GLOBAL_PALETTE[10], width=1, dash='dot'),
        annotation_text="Target",
    )
    fig.update_layout(
        xaxis_title="Periods",
        yaxis_title="Portfolio Value (R$)",
        template=_template(theme),
        hovermode="x unified",
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1)
    )
    return fig


# ============================================================
# TABLES
# ============================================================

def get_fund_summary_table(data):
    rows = []
    for f in data["calculated_funds"]:
        rows.append({
            "Fund": f["name"] or f["id"],
            "Enabled": "Yes" if f["enabled"] else "No",
            "Value": fmt_brl(f["current_value"]),
            "Invested": fmt_brl(f["invested_total"]),
            "Return": fmt_brl(f["total_return"]),
            "Return %": fmt_pct(f["total_return_pct"]),
            "Share %": f"{f['allocation_pct']:.2f}%",
            "Target %": f"{f['target_pct']:.2f}%",
            "Weekly (Recent)": fmt_pp(f["rw_last"]),
            "Risk": RISK_LABELS.get(f["risk_label"], f["risk_label"]),
        })
    return pd.DataFrame(rows, columns=[
        "Fund", "Enabled", "Value", "Invested", "Return", "Return %",
        "Share %", "Target %", "Weekly (Recent)", "Risk",
    ])


def get_contributions_table(data, fund_id):
    """One row per stored contribution, in document order ("#" is 1-based)."""
    fund = get_fund(data, fund_id)
    columns = ["#", "Date", "Value", "Return", "Total Today", "Yield", "Weekly", "% Bench", "Status"]
    if fund is None:
        return pd.DataFrame(columns=columns)

    rows = []
    for position, c in enumerate(fund["contributions"], start=1):
        if not c["valid"]:
            rows.append({"#": position, "Date": c["date"] or "--", "Value": fmt_brl(c["value"]),
                         "Return": fmt_brl(c["return"]), "Total Today": "--", "Yield": "--",
                         "Weekly": "--", "% Bench": "--", "Status": "Ignored"})
            continue
        rows.append({
            "#": position,
            "Date": c["date"],
            "Value": fmt_brl(c["value"]),
            "Return": fmt_brl(c["return"]),
            "Total Today": fmt_brl(c["total_value"]),
            "Yield": fmt_pct(c["row_yield"]),
            "Weekly": fmt_pp(c["yield_per_week"]),
            "% Bench": fmt_pct(c["pct_bench"], decimals=0),
            "Status": f"{trend_symbol(1 if c['beats_benchmark'] else -1)} benchmark",
        })
    return pd.DataFrame(rows, columns=columns)


def get_balances_table(data, fund_id):
    fund = get_fund(data, fund_id)
    rows = []
    if fund is not None:
        rows = [
            {"#": position, "Date": b["date"] or "--", "Balance": fmt_brl(b["value"]),
             "Status": "" if b["valid"] else "Ignored"}
            for position, b in enumerate(fund["balances"], start=1)
        ]
    return pd.DataFrame(rows, columns=["#", "Date", "Balance", "Status"])


def get_allocation_plan_table(data):
    rows = []
    for step in data["allocation_plan"]:
        rows.append({
            "Fund": step["name"] or step["fund_id"],
            "Movement": fmt_brl(step["movement"]),
            "Reason": step["reason"] or ("Disabled" if not step["enabled"] else "--"),
        })
    return pd.DataFrame(rows, columns=["Fund", "Movement", "Reason"])


def get_projection_scenarios_table(data):
    """One row per scenario: value at each horizon plus implied weekly speed."""
    rows = []
    for (scenario, regime), label in SCENARIO_LABELS.items():
        row = {"Scenario": label}
        for periods in sorted(PROJECTION_HORIZONS):
            row[f"{periods}p"] = fmt_brl(data["projections"][scenario][regime][periods])
        row["Implied Speed"] = fmt_pp(data["implied_speeds"][scenario][regime])
        row["Time to Target"] = data["time_to_target"][scenario][regime]["label"]
        rows.append(row)
    return pd.DataFrame(rows)


def get_benchmark_target_table(data):
    ttm = data["time_to_target"]
    return pd.DataFrame([
        {"Metric": "Benchmark weekly rate", "Value": fmt_pp(data["benchmark_weekly_rate"])},
        {"Metric": "Time to target (current)", "Value": ttm["current"]["benchmark"]["label"]},
        {"Metric": "Time to target (after capital)", "Value": ttm["after_capital"]["benchmark"]["label"]},
        {"Metric": "Target", "Value": fmt_brl(data["target_value"])},
    ])


def get_fund_projection_table(data, scenario="current", periods=24):
    rows = []
    for f in data["calculated_funds"]:
        proj = f["projections"][scenario]
        rows.append({
            "Fund": f["name"] or f["id"],
            "Value": fmt_brl(f["current_value"]),
            "Movement": fmt_brl(f["movement"]),
            f"Historical ({periods}p)": fmt_brl(proj["historical"][periods]),
            f"Recent ({periods}p)": fmt_brl(proj["recent"][periods]),
            "Target (Hist.)": f["time_to_target"]["historical"]["label"],
            "Target (Recent)": f["time_to_target"]["recent"]["label"],
        })
    return pd.DataFrame(rows)


def get_period_return_text(period):
    """'12,34% (R$ 1.234,56) over 3m' or '--'."""
    if period["period_return_pct"] is None:
        return "--"
    return (
        f"{trend_symbol(period['period_return'])} {fmt_pct(period['period_return_pct'])} "
        f"({fmt_brl(period['period_return'])}) over {period['period_label']}"
    )
