from datetime import datetime

import dash
from dash import dcc, html, callback, Input, Output, State, no_update
import dash_bootstrap_components as dbc
import dash_ag_grid as dag

import dash_wrappers as dw
from config import RECALC_DEBOUNCE_MS
from financial_math import parse_date
from report_formatting import fmt_brl, fmt_pct, fmt_pp, parse_brl
from components.badges import create_kpi_card, create_risk_badge, create_deviation_badge
from components.period_controls import create_period_controls, resolve_filter

DEBOUNCE_SECONDS = RECALC_DEBOUNCE_MS / 1000
NOTE_STYLE = {'fontSize': '9pt', 'fontStyle': 'italic', 'color': 'gray', 'margin': '10px'}


def _grid(grid_id, empty_text):
    return dag.AgGrid(
        id=grid_id,
        rowData=[],
        columnDefs=[],
        defaultColDef={"flex": 1, "minWidth": 90, "sortable": True, "filter": True, "resizable": True},
        className="ag-theme-alpine-dark",
        dashGridOptions={"domLayout": "autoHeight", "rowSelection": "single",
                         "overlayNoRowsTemplate": empty_text}
    )


def _column_defs(df):
    defs = []
    for col in df.columns:
        if col == "#":
            defs.append({"field": col, "headerName": col, "maxWidth": 70, "minWidth": 60})
        else:
            defs.append({"field": col, "headerName": col})
    return defs


def _selected_position(selected_rows):
    """0-based document position of the selected grid row, or None."""
    if not selected_rows:
        return None
    return int(selected_rows[0]["#"]) - 1


def stored_fund_settings(fund_id):
    """
    (name, targetPct, enabled) as stored in the document, or None for an
    unknown fund. The inputs are filled from these rather than the engine's
    display defaults ("Fund N"), so loading a fund never writes back.
    """
    raw = next((f for f in dw.get_document().get("funds", []) if f.get("id") == fund_id), None)
    if raw is None:
        return None
    return raw.get("name", ""), raw.get("targetPct", ""), bool(raw.get("enabled", True))


def _record_form(prefix, with_return):
    fields = [
        dbc.Col(dcc.DatePickerSingle(id=f'{prefix}-date', display_format='YYYY-MM-DD',
                                     placeholder="Date"), width="auto"),
        dbc.Col(dcc.Input(id=f'{prefix}-value', type='text', placeholder="Value (R$)",
                          className="form-control"), width=3),
    ]
    if with_return:
        fields.append(dbc.Col(dcc.Input(id=f'{prefix}-return', type='text', placeholder="Return (R$)",
                                        className="form-control"), width=3))
    fields += [
        dbc.Col(dbc.Button("Add", id=f'btn-{prefix}-add', color="primary", size="sm"), width="auto"),
        dbc.Col(dbc.Button("Remove Selected", id=f'btn-{prefix}-remove', color="danger",
                           outline=True, size="sm"), width="auto"),
    ]
    return dbc.Row(fields, className="g-2 align-items-center p-2")


layout = html.Div([
    dbc.Row([
        dbc.Col([
            dbc.Label("Fund"),
            dcc.Dropdown(id='fund-select', clearable=False, className="text-dark",
                         persistence=True, persistence_type='local'),
        ], width=4),
        dbc.Col(html.Div([
            dbc.Button("Add Fund", id="btn-fund-add", color="primary", size="sm", className="me-2"),
            dbc.Button("Remove Fund", id="btn-fund-remove", color="danger", outline=True, size="sm",
                       className="me-2"),
            dbc.Button("▲", id="btn-fund-up", color="secondary", outline=True, size="sm", className="me-1"),
            dbc.Button("▼", id="btn-fund-down", color="secondary", outline=True, size="sm"),
        ], className="pt-4"), width=4),
        dbc.Col(html.Div([
            html.Div(id='fund-deviation-badge', style={"display": "inline-block"}),
            html.Div(id='fund-risk-badge', style={"display": "inline-block"}),
        ], className="pt-4"), width=4),
    ], className="mb-2"),
    html.Div(id='fund-edit-status', className="text-muted mb-2"),

    # Fund Settings (debounced, recalculates without saving)
    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardBody([
                dbc.Row([
                    dbc.Col([
                        dbc.Label("Name"),
                        dcc.Input(id='fund-name-input', type='text', debounce=DEBOUNCE_SECONDS,
                                  className="form-control"),
                    ], width=5),
                    dbc.Col([
                        dbc.Label("Target (%)"),
                        dcc.Input(id='fund-target-input', type='text', debounce=DEBOUNCE_SECONDS,
                                  className="form-control"),
                    ], width=3),
                    dbc.Col([
                        dbc.Label("Allocation"),
                        dbc.Switch(id='fund-enabled-switch', label="Enabled", value=True),
                    ], width=4),
                ])
            ])
        ], className="shadow-sm"), width=12)
    ], className="mb-3"),

    dbc.Row([
        dbc.Col(html.Div(id='fund-kpi-value', style={'height': '100%'}), width=3),
        dbc.Col(html.Div(id='fund-kpi-return', style={'height': '100%'}), width=3),
        dbc.Col(html.Div(id='fund-kpi-weekly', style={'height': '100%'}), width=3),
        dbc.Col(html.Div(id='fund-kpi-movement', style={'height': '100%'}), width=3),
    ], className="mb-4 g-2"),

    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Fund History", className="card-title p-2"),
            create_period_controls("fund"),
            dcc.Graph(id='fund-history-chart', style={'height': '400px'})
        ]), width=12)
    ], className="mb-4"),

    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Contributions", className="card-title p-2"),
            _record_form("contribution", with_return=True),
            _grid("fund-contributions-grid", "No contributions."),
            html.P("Weekly = constant weekly rate implied by each contribution's return since its date. "
                   "% Bench = contribution yield relative to the benchmark over the same period.",
                   style=NOTE_STYLE)
        ]), width=8),
        dbc.Col(dbc.Card([
            html.H5("Balance Snapshots", className="card-title p-2"),
            _record_form("balance", with_return=False),
            _grid("fund-balances-grid", "No balance snapshots."),
            html.P("Without snapshots the value accrues from declared returns.", style=NOTE_STYLE)
        ]), width=4),
    ], className="mb-4"),
])


@callback(
    [Output('fund-select', 'options'),
     Output('fund-select', 'value')],
    Input('data-signal', 'data'),
    State('fund-select', 'value')
)
def update_fund_options(signal, current):
    data = dw.get_data()
    if not data:
        return [], None
    options = dw.get_fund_options(data)
    ids = [o["value"] for o in options]
    if current in ids:
        return options, current
    return options, ids[0] if ids else None


@callback(
    [Output('fund-name-input', 'value'),
     Output('fund-target-input', 'value'),
     Output('fund-enabled-switch', 'value'),
     Output('fund-year', 'options')],
    Input('fund-select', 'value')
)
def load_fund_settings(fund_id):
    data = dw.get_data()
    fund = dw.get_fund(data, fund_id) if data and fund_id else None
    if fund is None:
        return "", "", True, []

    stored = stored_fund_settings(fund_id) or ("", "", True)
    return (*stored, dw.get_year_options(data, fund_id))


@callback(
    Output('data-signal', 'data', allow_duplicate=True),
    [Input('fund-name-input', 'value'),
     Input('fund-target-input', 'value'),
     Input('fund-enabled-switch', 'value')],
    State('fund-select', 'value'),
    prevent_initial_call=True
)
def edit_fund(name, target, enabled, fund_id):
    if not fund_id:
        return no_update

    stored = stored_fund_settings(fund_id)
    if stored is None:
        return no_update

    changes = {"name": name or "", "targetPct": target or "", "enabled": bool(enabled)}
    if stored == (changes["name"], changes["targetPct"], changes["enabled"]):
        return no_update

    dw.update_document(changes, fund_id=fund_id)
    return datetime.now().isoformat()


# ------------------------------------------------------------
# Fund list and record editing (in memory until saved)
# ------------------------------------------------------------

@callback(
    [Output('data-signal', 'data', allow_duplicate=True),
     Output('fund-select', 'value', allow_duplicate=True),
     Output('fund-edit-status', 'children')],
    [Input('btn-fund-add', 'n_clicks'),
     Input('btn-fund-remove', 'n_clicks'),
     Input('btn-fund-up', 'n_clicks'),
     Input('btn-fund-down', 'n_clicks')],
    State('fund-select', 'value'),
    prevent_initial_call=True
)
def manage_funds(_add, _remove, _up, _down, fund_id):
    ctx = dash.callback_context
    if not ctx.triggered:
        return no_update, no_update, no_update
    trigger = ctx.triggered_id

    try:
        if trigger == "btn-fund-add":
            _, new_id = dw.add_fund()
            return datetime.now().isoformat(), new_id, "Fund added (unsaved)."
        if not fund_id:
            return no_update, no_update, "Select a fund first."
        if trigger == "btn-fund-remove":
            dw.remove_fund(fund_id)
            return datetime.now().isoformat(), None, "Fund removed (unsaved)."
        dw.move_fund(fund_id, -1 if trigger == "btn-fund-up" else 1)
        return datetime.now().isoformat(), fund_id, no_update
    except KeyError as e:
        print(f"Fund edit failed: {e}")
        return no_update, no_update, f"Error: {e}"


def _edit_records(kind, trigger, add_id, fund_id, record, selected_rows):
    """Shared add/remove handler for the contribution and balance forms."""
    if not fund_id:
        return no_update, "Select a fund first."

    try:
        if trigger == add_id:
            if parse_date(record.get("date")) is None or parse_brl(record.get("value")) <= 0:
                return no_update, "Enter a date and a positive value."
            dw.add_record(fund_id, kind, record)
            return datetime.now().isoformat(), f"Added to {kind} (unsaved)."

        position = _selected_position(selected_rows)
        if position is None:
            return no_update, "Select a row to remove."
        dw.remove_record(fund_id, kind, position)
        return datetime.now().isoformat(), f"Removed from {kind} (unsaved)."
    except (KeyError, IndexError, ValueError) as e:
        print(f"Record edit failed: {e}")
        return no_update, f"Error: {e}"


@callback(
    [Output('data-signal', 'data', allow_duplicate=True),
     Output('fund-edit-status', 'children', allow_duplicate=True)],
    [Input('btn-contribution-add', 'n_clicks'),
     Input('btn-contribution-remove', 'n_clicks')],
    [State('contribution-date', 'date'),
     State('contribution-value', 'value'),
     State('contribution-return', 'value'),
     State('fund-contributions-grid', 'selectedRows'),
     State('fund-select', 'value')],
    prevent_initial_call=True
)
def edit_contributions(_add, _remove, date, value, ret, selected_rows, fund_id):
    record = {"date": date, "value": value, "return": ret or "0"}
    return _edit_records("contributions", dash.callback_context.triggered_id, "btn-contribution-add",
                         fund_id, record, selected_rows)


@callback(
    [Output('data-signal', 'data', allow_duplicate=True),
     Output('fund-edit-status', 'children', allow_duplicate=True)],
    [Input('btn-balance-add', 'n_clicks'),
     Input('btn-balance-remove', 'n_clicks')],
    [State('balance-date', 'date'),
     State('balance-value', 'value'),
     State('fund-balances-grid', 'selectedRows'),
     State('fund-select', 'value')],
    prevent_initial_call=True
)
def edit_balances(_add, _remove, date, value, selected_rows, fund_id):
    record = {"date": date, "value": value}
    return _edit_records("balances", dash.callback_context.triggered_id, "btn-balance-add",
                         fund_id, record, selected_rows)


@callback(
    [Output('fund-kpi-value', 'children'),
     Output('fund-kpi-return', 'children'),
     Output('fund-kpi-weekly', 'children'),
     Output('fund-kpi-movement', 'children'),
     Output('fund-deviation-badge', 'children'),
     Output('fund-risk-badge', 'children'),
     Output('fund-contributions-grid', 'rowData'),
     Output('fund-contributions-grid', 'columnDefs'),
     Output('fund-contributions-grid', 'className'),
     Output('fund-balances-grid', 'rowData'),
     Output('fund-balances-grid', 'columnDefs'),
     Output('fund-balances-grid', 'className')],
    [Input('data-signal', 'data'),
     Input('theme-store', 'data'),
     Input('fund-select', 'value')]
)
def update_fund(signal, theme, fund_id):
    grid_class = "ag-theme-alpine-dark" if theme != "light" else "ag-theme-alpine"
    data = dw.get_data()
    fund = dw.get_fund(data, fund_id) if data and fund_id else None
    if fund is None:
        return ("...", "...", "...", "...", None, None,
                [], [], grid_class, [], [], grid_class)

    value_card = create_kpi_card(
        "Current Value", fmt_brl(fund["current_value"]),
        subtext=f"Invested: {fmt_brl(fund['invested_total'])}"
    )

    ret = fund["total_return"]
    return_card = create_kpi_card(
        "Total Return", fmt_brl(ret),
        subtext=fmt_pct(fund["total_return_pct"]),
        is_positive=(ret >= 0) if ret is not None else None
    )

    weekly_card = create_kpi_card(
        "Weekly Yield (Recent)", fmt_pp(fund["rw_last"]),
        subtext=f"First: {fmt_pp(fund['rw_first'])}",
        is_positive=(fund["rw_last"] >= data["benchmark_weekly_rate"]) if fund["last_contribution"] else None
    )

    movement_card = create_kpi_card(
        "Suggested Contribution", fmt_brl(fund["movement"]),
        subtext=fund["reason"] or ("Disabled" if not fund["enabled"] else None)
    )

    deviation_badge = create_deviation_badge(fund["deviation"], fund["deviation_label"], "fund-deviation")
    risk_badge = create_risk_badge(fund["risk_label"], fund["risk"], "fund-risk")

    contrib_df = dw.get_contributions_table(data, fund_id)
    balance_df = dw.get_balances_table(data, fund_id)

    return (value_card, return_card, weekly_card, movement_card, deviation_badge, risk_badge,
            contrib_df.to_dict('records'), _column_defs(contrib_df), grid_class,
            balance_df.to_dict('records'), _column_defs(balance_df), grid_class)


@callback(
    [Output('fund-history-chart', 'figure'),
     Output('fund-period-return', 'children')],
    [Input('data-signal', 'data'),
     Input('theme-store', 'data'),
     Input('fund-select', 'value'),
     Input('fund-filter', 'value'),
     Input('fund-year', 'value'),
     Input('fund-custom-range', 'start_date'),
     Input('fund-custom-range', 'end_date'),
     Input('fund-show-invested', 'value')]
)
def update_fund_history(signal, theme, fund_id, filter_value, year, start_date, end_date, show_invested):
    data = dw.get_data()
    if not data or not fund_id:
        return {}, ""

    token = resolve_filter(filter_value, year, start_date, end_date)
    equity, invested, period = dw.get_fund_window(data, fund_id, token)
    fig = dw.get_history_chart(equity, invested, show_invested=show_invested, theme=theme)
    return fig, dw.get_period_return_text(period)
