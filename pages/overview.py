from dash import dcc, html, callback, Input, Output
import dash_bootstrap_components as dbc
import dash_ag_grid as dag

import dash_wrappers as dw
from report_formatting import fmt_brl, fmt_pct, fmt_pp
from components.badges import create_kpi_card, create_target_badge, create_risk_badge
from components.period_controls import create_period_controls, resolve_filter

layout = html.Div([
    # Single Unified KPI Row
    dbc.Row([
        dbc.Col(html.Div(id='kpi-value-card', style={'height': '100%'}), width=3),
        dbc.Col(html.Div(id='kpi-invested-card', style={'height': '100%'}), width=3),
        dbc.Col(html.Div(id='kpi-return-card', style={'height': '100%'}), width=3),
        dbc.Col(html.Div(id='kpi-risk-card', style={'height': '100%'}), width=3),
    ], className="mb-3 g-2"),

    dbc.Row([
        dbc.Col(html.Div([
            html.Div(id='overview-target-badge', style={"display": "inline-block"}),
            html.Div(id='overview-risk-badge', style={"display": "inline-block"}),
        ]), width=12),
    ], className="mb-3"),

    # History Chart
    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Portfolio History", className="card-title p-2"),
            create_period_controls("overview"),
            dcc.Graph(id='overview-history-chart', style={'height': '420px'})
        ]), width=12)
    ], className="mb-4"),

    # Fund Summary
    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Funds", className="card-title p-2"),
            dcc.Loading(html.Div(id='overview-funds-table-container'))
        ]), width=12)
    ], className="mb-4"),
])


@callback(
    Output('overview-year', 'options'),
    Input('data-signal', 'data')
)
def update_year_options(signal):
    data = dw.get_data()
    if not data:
        return []
    return dw.get_year_options(data)


@callback(
    [Output('kpi-value-card', 'children'),
     Output('kpi-invested-card', 'children'),
     Output('kpi-return-card', 'children'),
     Output('kpi-risk-card', 'children'),
     Output('overview-target-badge', 'children'),
     Output('overview-risk-badge', 'children'),
     Output('overview-funds-table-container', 'children')],
    [Input('data-signal', 'data'),
     Input('theme-store', 'data')]
)
def update_overview(signal, theme):
    data = dw.get_data()
    if not data:
        return "...", "...", "...", "...", None, None, "Loading..."

    metrics = dw.get_snapshot_metrics(data)

    value_card = create_kpi_card("Total Value", fmt_brl(metrics['total_value']))
    invested_card = create_kpi_card(
        "Total Invested", fmt_brl(metrics['total_invested']),
        subtext=f"Capital to allocate: {fmt_brl(metrics['capital'])}"
    )

    ret = metrics['total_return']
    return_card = create_kpi_card(
        "Total Return", fmt_brl(ret),
        subtext=fmt_pct(metrics['return_pct']),
        is_positive=(ret >= 0) if ret is not None else None
    )

    risk_text = fmt_pp(metrics['risk_value']) if metrics['risk_value'] is not None else "--"
    risk_card = create_kpi_card(
        "Global Risk (weekly std)", risk_text,
        subtext=(metrics['risk_label'] or "no data").capitalize()
    )

    target_badge = create_target_badge(metrics['total_target_pct'], metrics['target_compliant'], "overview-target-sum")
    risk_badge = create_risk_badge(metrics['risk_label'], metrics['risk_value'], "overview-global-risk")

    funds_df = dw.get_fund_summary_table(data)
    if funds_df.empty:
        funds_table = html.P("No funds yet. Import a portfolio in Settings.",
                             style={'fontStyle': 'italic', 'color': 'gray', 'padding': '10px'})
    else:
        funds_table = dag.AgGrid(
            id="overview-funds-grid",
            rowData=funds_df.to_dict('records'),
            columnDefs=[{"field": col, "headerName": col} for col in funds_df.columns],
            defaultColDef={"flex": 1, "minWidth": 100, "sortable": True, "filter": True, "resizable": True},
            className="ag-theme-alpine-dark" if theme != "light" else "ag-theme-alpine",
            dashGridOptions={"domLayout": "autoHeight"}
        )

    return value_card, invested_card, return_card, risk_card, target_badge, risk_badge, funds_table


@callback(
    [Output('overview-history-chart', 'figure'),
     Output('overview-period-return', 'children')],
    [Input('data-signal', 'data'),
     Input('theme-store', 'data'),
     Input('overview-filter', 'value'),
     Input('overview-year', 'value'),
     Input('overview-custom-range', 'start_date'),
     Input('overview-custom-range', 'end_date'),
     Input('overview-show-invested', 'value')]
)
def update_history(signal, theme, filter_value, year, start_date, end_date, show_invested):
    data = dw.get_data()
    if not data:
        return {}, ""

    token = resolve_filter(filter_value, year, start_date, end_date)
    equity, invested, period = dw.get_portfolio_window(data, token)
    fig = dw.get_history_chart(equity, invested, show_invested=show_invested, theme=theme)
    return fig, dw.get_period_return_text(period)
