from dash import dcc, html, callback, Input, Output
import dash_bootstrap_components as dbc
import dash_ag_grid as dag

import dash_wrappers as dw
from config import PROJECTION_HORIZONS


def _grid(grid_id, df, theme, header=True):
    options = {"domLayout": "autoHeight"}
    if not header:
        options["headerHeight"] = 0
    return dag.AgGrid(
        id=grid_id,
        rowData=df.to_dict('records'),
        columnDefs=[{"field": col, "headerName": col if header else ""} for col in df.columns],
        defaultColDef={"flex": 1, "minWidth": 100, "sortable": True, "resizable": True},
        className="ag-theme-alpine-dark" if theme != "light" else "ag-theme-alpine",
        dashGridOptions=options
    )


layout = html.Div([
    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardBody([
                html.H5("Projected Portfolio Value", className="card-title"),
                dcc.Graph(id='projections-chart'),
                html.Small(
                    "Historical uses each fund's weekly yield at its first contribution, Recent uses its latest. "
                    "After Capital adds the suggested contributions before compounding.",
                    className="text-muted fst-italic"
                )
            ])
        ]), width=8, className="mb-4"),
        dbc.Col(dbc.Card([
            dbc.CardBody([
                html.H5("Benchmark", className="card-title"),
                dcc.Loading(html.Div(id='projections-benchmark-container')),
            ])
        ]), width=4, className="mb-4"),
    ]),

    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardBody([
                html.H5("Scenarios", className="card-title"),
                dcc.Loading(html.Div(id='projections-scenarios-container')),
            ])
        ]), width=12, className="mb-4"),
    ]),

    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardBody([
                dbc.Row([
                    dbc.Col(html.H5("By Fund", className="card-title"), width=4),
                    dbc.Col(dbc.RadioItems(
                        id='projections-scenario',
                        options=[
                            {"label": "Current", "value": "current"},
                            {"label": "After Capital", "value": "after_capital"},
                        ],
                        value="current",
                        inline=True
                    ), width=4),
                    dbc.Col(dbc.RadioItems(
                        id='projections-horizon',
                        options=[{"label": f"{p} periods", "value": p} for p in sorted(PROJECTION_HORIZONS)],
                        value=max(PROJECTION_HORIZONS),
                        inline=True
                    ), width=4),
                ]),
                dcc.Loading(html.Div(id='projections-funds-container')),
            ])
        ]), width=12, className="mb-4"),
    ]),
])


@callback(
    [Output('projections-chart', 'figure'),
     Output('projections-benchmark-container', 'children'),
     Output('projections-scenarios-container', 'children')],
    [Input('data-signal', 'data'),
     Input('theme-store', 'data')]
)
def update_projections(signal, theme):
    data = dw.get_data()
    if not data:
        return {}, "Loading...", "Loading..."

    fig = dw.get_projections_chart(data, theme)
    bench = _grid("projections-benchmark-grid", dw.get_benchmark_target_table(data), theme, header=False)
    scenarios = _grid("projections-scenarios-grid", dw.get_projection_scenarios_table(data), theme)
    return fig, bench, scenarios


@callback(
    Output('projections-funds-container', 'children'),
    [Input('data-signal', 'data'),
     Input('theme-store', 'data'),
     Input('projections-scenario', 'value'),
     Input('projections-horizon', 'value')]
)
def update_fund_projections(signal, theme, scenario, horizon):
    data = dw.get_data()
    if not data:
        return "Loading..."

    df = dw.get_fund_projection_table(data, scenario=scenario, periods=int(horizon))
    if df.empty:
        return html.P("No funds yet.", style={'fontStyle': 'italic', 'color': 'gray', 'padding': '10px'})
    return _grid("projections-funds-grid", df, theme)
