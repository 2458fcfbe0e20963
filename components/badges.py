import dash_bootstrap_components as dbc
from dash import html

from report_formatting import fmt_pp

RISK_COLORS = {
    "low": "success",
    "moderate": "warning",
    "high": "danger",
    "none": "secondary",
    "insufficient data": "secondary",
}

DEVIATION_COLORS = {
    "ideal": "success",
    "marginal": "info",
    "overweight": "warning",
    "underweight": "warning",
    "rebalance": "danger",
}


def create_kpi_card(title, value, subtext=None, is_positive=None):
    """
    KPI card: title, main value and an optional colored subtext.
    """
    subtext_color = "#6c757d"
    main_arrow_span = None

    if is_positive is not None:
        subtext_color = "#28a745" if is_positive else "#dc3545"
        symbol = "▲" if is_positive else "▼"
        main_arrow_span = html.Span(
            f"{symbol} ",
            style={'color': subtext_color, 'fontSize': '1.2rem', 'marginRight': '4px', 'verticalAlign': 'middle'}
        )

    h4_content = [main_arrow_span, value] if main_arrow_span else value

    return dbc.Card(
        dbc.CardBody([
            html.Div(title, className="text-muted small mb-1", style={'fontSize': '0.75rem', 'fontWeight': '500'}),
            html.H4(h4_content, className="mb-1", style={'fontWeight': '600', 'fontSize': '1.4rem'}),
            # Placeholder keeps card heights aligned
            html.Div(
                subtext or " ",
                style={'fontSize': '0.8rem', 'fontWeight': '500', 'color': subtext_color if subtext else 'transparent'}
            ),
        ], className="p-2"),
        className="shadow-sm",
        style={
            'borderLeft': f'4px solid {subtext_color if is_positive is not None else "#4C6A92"}',
            'height': '100%'
        }
    )


def _with_tooltip(badge_id, label, color, tooltip_lines):
    badge = dbc.Badge(label, color=color, pill=True, id=badge_id, style={"cursor": "pointer", "fontSize": "0.8rem"})
    return html.Div([
        badge,
        dbc.Tooltip(
            html.Div([html.P(line, className="mb-0") for line in tooltip_lines], style={"textAlign": "left", "padding": "5px"}),
            target=badge_id,
            placement="bottom",
        )
    ], style={"display": "inline-block", "marginLeft": "10px"})


def create_target_badge(total_target_pct, compliant, badge_id="target-sum-badge"):
    """Sum of fund targets; green only when it adds up to 100%."""
    label = f"Targets: {total_target_pct:.1f}%"
    if compliant:
        return _with_tooltip(badge_id, label, "success", ["Fund targets add up to 100%."])
    return _with_tooltip(badge_id, label, "danger", [
        "Fund targets should add up to 100%.",
        f"Difference: {total_target_pct - 100:+.1f} points.",
    ])


def create_risk_badge(risk_label, risk_value=None, badge_id="risk-badge"):
    if not risk_label:
        return _with_tooltip(badge_id, "Risk: --", "secondary", ["Not enough contributions to measure risk."])

    lines = ["Standard deviation of weekly yields across contributions."]
    if risk_value is not None:
        lines.append(f"Deviation: {fmt_pp(risk_value)}")
    return _with_tooltip(badge_id, f"Risk: {risk_label.capitalize()}", RISK_COLORS.get(risk_label, "secondary"), lines)


def create_deviation_badge(deviation, deviation_label, badge_id="deviation-badge"):
    """Current share vs target share, or nothing when the fund has no target."""
    if deviation is None or deviation_label is None:
        return html.Div()
    return _with_tooltip(
        badge_id,
        f"{deviation:+.1f} pts ({deviation_label})",
        DEVIATION_COLORS.get(deviation_label, "secondary"),
        ["Current allocation minus target allocation."],
    )
