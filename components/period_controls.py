from dash import dcc, html
import dash_bootstrap_components as dbc

from financial_math import PERIOD_FILTERS


def create_period_controls(prefix):
    """
    Filter bar for a history chart: quick windows / years, a custom date
    range and the invested-line toggle. Component ids are `{prefix}-...`.
    """
    return dbc.Row([
        dbc.Col(
            dbc.RadioItems(
                id=f"{prefix}-filter",
                options=[{"label": f, "value": f} for f in PERIOD_FILTERS] + [{"label": "Custom", "value": "CUSTOM"}],
                value="MAX",
                inline=True,
                className="btn-group btn-group-sm",
                inputClassName="btn-check",
                labelClassName="btn btn-outline-secondary",
                labelCheckedClassName="active",
                persistence=True,
                persistence_type='local'
            ),
            width="auto"
        ),
        dbc.Col(
            dcc.Dropdown(
                id=f"{prefix}-year",
                placeholder="Year",
                clearable=True,
                className="text-dark",
                style={"minWidth": "110px"}
            ),
            width="auto"
        ),
        dbc.Col(
            dcc.DatePickerRange(
                id=f"{prefix}-custom-range",
                display_format="YYYY-MM-DD",
                style={'zIndex': 100}
            ),
            width="auto"
        ),
        dbc.Col(
            dbc.Switch(id=f"{prefix}-show-invested", label="Show invested", value=True),
            width="auto"
        ),
        dbc.Col(html.Div(id=f"{prefix}-period-return", className="fw-bold"), width="auto"),
    ], className="g-2 align-items-center p-2")


def resolve_filter(filter_value, year, start_date, end_date):
    """A selected year overrides the quick filter; CUSTOM needs both dates."""
    if year:
        return str(year)
    if filter_value == "CUSTOM":
        if start_date and end_date:
            return f"CUSTOM:{str(start_date)[:10]}:{str(end_date)[:10]}"
        return "MAX"
    return filter_value or "MAX"
