from dash import dcc, html, callback, Input, Output
import dash_bootstrap_components as dbc
import dash_ag_grid as dag

import dash_wrappers as dw
from report_formatting import fmt_brl
from components.badges import create_target_badge

layout = html.Div([
    dbc.Row([
        dbc.Col(html.Div([
            html.H4("Allocation Plan", className="d-inline-block"),
            html.Div(id='alloc-target-badge', style={"display": "inline-block"}),
        ]), width=8),
        dbc.Col(html.Div(id='alloc-strategy-note', className="text-muted text-end pt-2"), width=4),
    ], className="mb-3"),

    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Suggested Contributions", className="card-title p-2"),
            dcc.Loading(html.Div(id='alloc-plan-container'))
        ]), width=12, className="mb-4"),
    ]),

    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Current Allocation", className="card-title p-2"),
            dcc.Graph(id='alloc-pie-chart')
        ]), width=6),
        dbc.Col(dbc.Card([
            html.H5("Allocation vs Target", className="card-title p-2"),
            dcc.Graph(id='alloc-bar-chart')
        ]), width=6),
    ], className="mb-4"),
])


@callback(
    [Output('alloc-target-badge', 'children'),
     Output('alloc-strategy-note', 'children'),
     Output('alloc-plan-container', 'children'),
     Output('alloc-pie-chart', 'figure'),
     Output('alloc-bar-chart', 'figure')],
    [Input('data-signal', 'data'),
     Input('theme-store', 'data')]
)
def update_allocations(signal, theme):
    data = dw.get_data()
    if not data:
        return None, "", "Loading...", {}, {}

    badge = create_target_badge(data["total_target_pct"], data["target_compliant"], "alloc-target-sum")
    strategy = "Target deficit" if data["strategy"] == "target" else "Momentum"
    note = f"Strategy: {strategy} | Capital: {fmt_brl(data['capital'])}"

    plan_df = dw.get_allocation_plan_table(data)
    if plan_df.empty:
        plan_content = html.P("No funds available.", style={'fontStyle': 'italic', 'color': 'gray', 'padding': '10px'})
    else:
        total_row = {"Fund": "TOTAL", "Movement": fmt_brl(sum(s["movement"] for s in data["allocation_plan"])), "Reason": ""}
        plan_content = html.Div([
            dag.AgGrid(
                id="alloc-plan-grid",
                rowData=plan_df.to_dict('records'),
                columnDefs=[
                    {"field": "Fund", "headerName": "Fund"},
                    {"field": "Movement", "headerName": "Movement"},
                    {"field": "Reason", "headerName": "Reason", "flex": 2},
                ],
                defaultColDef={"flex": 1, "minWidth": 100, "sortable": True, "filter": True, "resizable": True},
                className="ag-theme-alpine-dark" if theme != "light" else "ag-theme-alpine",
                dashGridOptions={
                    "domLayout": "autoHeight",
                    "pinnedBottomRowData": [total_row],
                    "getRowStyle": {
                        "function": "params.data['Fund'] === 'TOTAL' ? {'fontWeight': 'bold', 'borderTop': '2px solid #888'} : {}"
                    }
                }
            ),
            html.P("Capital is split once, proportionally to each enabled fund's score.", style={
                'fontSize': '9pt',
                'fontStyle': 'italic',
                'color': 'gray',
                'marginTop': '10px',
                'marginBottom': '0px'
            })
        ])

    pie, bar = dw.get_allocation_charts(data, theme)
    return badge, note, plan_content, pie, bar
