import dash
from dash import dcc, html, Input, Output, State
import dash_bootstrap_components as dbc
from datetime import datetime

# Import wrappers
import dash_wrappers as dw
from data_loader import empty_document

# Import Pages
from pages import overview, funds, allocations, projections, settings

# Initialize App
app = dash.Dash(
    __name__,
    external_stylesheets=[dbc.themes.CYBORG],
    suppress_callback_exceptions=True,
    title="Fund Contributions"
)
server = app.server

# Initialize Data Cache
try:
    dw.refresh_data()
    print("Initial data load complete.")
except (OSError, ValueError) as e:
    print(f"Initial data load failed: {e}")
    dw.refresh_data(empty_document())

# Sidebar Component
sidebar = html.Div(
    [
        html.H3("APORTES", className="display-6"),
        html.P("Fund Contributions", className="lead"),
        html.Hr(),

        dbc.Nav(
            [
                dbc.NavLink("Overview", href="/", active="exact"),
                dbc.NavLink("Funds", href="/funds", active="exact"),
                dbc.NavLink("Allocation", href="/allocations", active="exact"),
                dbc.NavLink("Projections", href="/projections", active="exact"),
                dbc.NavLink("Settings", href="/settings", active="exact"),
            ],
            vertical=True,
            pills=True,
        ),

        html.Hr(),

        # Controls
        html.Div([
            dbc.Label("Theme"),
            dbc.Switch(id="theme-switch", label="Dark Mode", value=True, className="mb-2"),
            html.Hr(),
            dbc.Button("Reload From Disk", id="btn-reload", color="secondary", className="w-100"),
            html.Div(id="reload-status", className="small text-muted mt-2"),
        ]),
    ],
    id="sidebar",
    className="sidebar",
)

# Content Container
content = html.Div(id="page-content", className="content")

# Main Layout
app.layout = html.Div(
    [
        dcc.Location(id="url"),

        # Stores for Global State
        dcc.Store(id="data-signal", data=datetime.now().isoformat()),
        dcc.Store(id="theme-store", data="dark"),

        # Toggle Button
        html.Button(
            "☰",
            id="btn-sidebar-toggle",
            className="btn btn-secondary",
            style={
                "position": "fixed",
                "top": "10px",
                "left": "10px",
                "zIndex": 1100,
                "borderRadius": "50%",
                "width": "40px",
                "height": "40px",
                "display": "flex",
                "alignItems": "center",
                "justifyContent": "center",
                "fontSize": "1.2rem",
                "paddingBottom": "4px"
            }
        ),

        sidebar,
        content,
    ],
    id="main-container",
    **{"data-theme": "dark"}
)

# Validation Layout (Required for multi-page apps with global callbacks)
app.validation_layout = html.Div([
    app.layout,
    overview.layout,
    funds.layout,
    allocations.layout,
    projections.layout,
    settings.layout,
])

# ============================================================
# CALLBACKS
# ============================================================

# 1. Router
@app.callback(Output("page-content", "children"), [Input("url", "pathname")])
def render_page_content(pathname):
    if pathname == "/":
        return overview.layout
    elif pathname == "/funds":
        return funds.layout
    elif pathname == "/allocations":
        return allocations.layout
    elif pathname == "/projections":
        return projections.layout
    elif pathname == "/settings":
        return settings.layout
    return dbc.Container(
        [
            html.H1("404: Not found", className="text-danger"),
            html.Hr(),
            html.P(f"The pathname {pathname} was not recognised..."),
        ],
        className="py-3"
    )

# 2. Theme
@app.callback(
    [Output("theme-store", "data"),
     Output("main-container", "data-theme")],
    [Input("theme-switch", "value")]
)
def update_theme(is_dark):
    theme = "dark" if is_dark else "light"
    return theme, theme

# 3. Reload the stored document (drops unsaved edits)
@app.callback(
    [Output("data-signal", "data", allow_duplicate=True),
     Output("reload-status", "children")],
    [Input("btn-reload", "n_clicks")],
    prevent_initial_call=True
)
def reload_from_disk(n):
    try:
        dw.reload_document()
    except (OSError, ValueError) as e:
        print(f"Error reloading portfolio: {e}")
        return dash.no_update, f"Error: {str(e)}"
    return datetime.now().isoformat(), f"Reloaded at {datetime.now():%H:%M:%S}"

# 4. Sidebar Toggle Logic
@app.callback(
    [Output("sidebar", "className"),
     Output("page-content", "className")],
    [Input("btn-sidebar-toggle", "n_clicks")],
    [State("sidebar", "className"),
     State("page-content", "className")]
)
def toggle_sidebar(n, sidebar_class, content_class):
    if n:
        if "hidden" in sidebar_class:
            return sidebar_class.replace(" hidden", ""), content_class.replace(" expanded", "")
        else:
            return sidebar_class + " hidden", content_class + " expanded"
    return sidebar_class, content_class

if __name__ == "__main__":
    app.run(debug=True)
