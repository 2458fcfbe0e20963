from datetime import datetime

import dash
from dash import dcc, html, callback, Input, Output, State
import dash_bootstrap_components as dbc

import dash_wrappers as dw
from data_loader import decode_upload, export_filename, export_json
from config import RECALC_DEBOUNCE_MS

DEBOUNCE_SECONDS = RECALC_DEBOUNCE_MS / 1000

layout = html.Div([
    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Portfolio Parameters", className="card-title p-2"),
            html.Div([
                dbc.Label("Capital to Allocate (R$)"),
                dcc.Input(id='settings-capital', type='text', debounce=DEBOUNCE_SECONDS,
                          className="form-control mb-3", placeholder="0,00"),

                dbc.Label("Benchmark Annual Rate (%)"),
                dcc.Input(id='settings-benchmark-rate', type='text', debounce=DEBOUNCE_SECONDS,
                          className="form-control mb-3", placeholder="10,65"),

                dbc.Label("Allocation Strategy"),
                dbc.RadioItems(
                    id='settings-strategy',
                    options=[
                        {"label": "Target deficit", "value": "target"},
                        {"label": "Momentum (recent weekly yield)", "value": "momentum"},
                    ],
                    value="target",
                    className="mb-3"
                ),

                dbc.Button("Save", id="btn-save-portfolio", color="primary", className="me-2"),
                html.Div(id='save-status', className="text-muted mt-2")
            ], className="p-3")
        ]), width=6),

        dbc.Col(dbc.Card([
            html.H5("Data Management", className="card-title p-2"),
            html.Div([
                html.P("Import a portfolio JSON file or export the current one."),

                dcc.Upload(
                    id='upload-portfolio',
                    children=html.Div(['Drag and Drop or ', html.A('Select File')]),
                    style={
                        'width': '100%', 'height': '60px', 'lineHeight': '60px',
                        'borderWidth': '1px', 'borderStyle': 'dashed',
                        'borderRadius': '5px', 'textAlign': 'center', 'marginBottom': '20px'
                    },
                    accept=".json,application/json",
                    multiple=False
                ),

                dbc.Button("Export JSON", id="btn-export-portfolio", color="secondary"),
                dcc.Download(id="download-portfolio"),

                html.Div(id='upload-status', className="text-muted mt-2")
            ], className="p-3")
        ]), width=6),
    ]),
])


@callback(
    [Output('settings-capital', 'value'),
     Output('settings-benchmark-rate', 'value'),
     Output('settings-strategy', 'value')],
    [Input('url', 'pathname'),
     Input('data-signal', 'data')]
)
def load_settings(_pathname, _signal):
    document = dw.get_document()
    return document.get("capital", ""), document.get("benchmarkAnnualRate", ""), document.get("strategy", "target")


@callback(
    Output('data-signal', 'data', allow_duplicate=True),
    [Input('settings-capital', 'value'),
     Input('settings-benchmark-rate', 'value'),
     Input('settings-strategy', 'value')],
    prevent_initial_call=True
)
def update_parameters(capital, rate, strategy):
    document = dw.get_document()
    changes = {"capital": capital or "", "benchmarkAnnualRate": rate or "", "strategy": strategy or "target"}
    if all(document.get(k) == v for k, v in changes.items()):
        return dash.no_update

    dw.update_document(changes)
    return datetime.now().isoformat()


@callback(
    Output('save-status', 'children'),
    Input('btn-save-portfolio', 'n_clicks'),
    prevent_initial_call=True
)
def save_portfolio(n_clicks):
    try:
        filename = dw.save_document()
    except OSError as e:
        print(f"Error saving portfolio: {e}")
        return f"Error: {str(e)}"
    return f"Saved to {filename} at {datetime.now():%H:%M:%S}"


@callback(
    [Output('data-signal', 'data', allow_duplicate=True),
     Output('upload-status', 'children')],
    Input('upload-portfolio', 'contents'),
    State('upload-portfolio', 'filename'),
    prevent_initial_call=True
)
def import_portfolio(contents, filename):
    if not contents:
        return dash.no_update, ""

    try:
        document = decode_upload(contents)
        dw.refresh_data(document)
    except ValueError as e:
        print(f"Error importing {filename}: {e}")
        return dash.no_update, f"Error: {str(e)}"

    return datetime.now().isoformat(), f"Imported {filename} ({len(document['funds'])} funds) - Engine Re-run Complete"


@callback(
    Output('download-portfolio', 'data'),
    Input('btn-export-portfolio', 'n_clicks'),
    prevent_initial_call=True
)
def export_portfolio(n_clicks):
    return dict(content=export_json(dw.get_document()), filename=export_filename())
