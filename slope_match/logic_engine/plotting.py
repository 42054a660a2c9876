from typing import Dict, Optional

import plotly.graph_objects as go

from slope_match.data_layer.models import RankResult, ResortRegistry
from .alignment import AlignedForecast

ACCENT_BLUE  = "#38bdf8"
ACCENT_ROSE  = "#fb7185"
ACCENT_TEAL  = "#2dd4bf"
TEXT_SEC      = "#a1a1aa"
PLOTLY_FONT   = "#71717a"
PLOTLY_GRID   = "rgba(255,255,255,0.05)"
PLOTLY_HOVER  = "#18181b"
BORDER        = "rgba(255, 255, 255, 0.07)"
TEXT_PRI      = "#f4f4f5"

# High contrast palette for up to eight resorts
RESORT_COLORS = [
    "#38bdf8", # Bright Sky Blue
    "#fb7185", # Vibrant Rose
    "#a3e635", # Electric Lime
    "#facc15", # Bright Yellow
    "#c084fc", # Vivid Purple
    "#2dd4bf", # Teal
    "#fb923c", # Orange
    "#e879f9", # Fuchsia
]

PLOTLY_TEMPLATE = dict(
    layout=go.Layout(
        paper_bgcolor="rgba(0,0,0,0)",
        plot_bgcolor="rgba(0,0,0,0)",
        font=dict(family="Inter, sans-serif", color=PLOTLY_FONT, size=11),
        xaxis=dict(gridcolor=PLOTLY_GRID, zeroline=False, showline=False),
        yaxis=dict(gridcolor=PLOTLY_GRID, zeroline=False, showline=False),
        margin=dict(l=0, r=0, t=20, b=20),
        legend=dict(orientation="h", y=1.06, x=0, bgcolor="rgba(0,0,0,0)", font=dict(size=11)),
        hovermode="x unified",
        hoverlabel=dict(
            bgcolor=PLOTLY_HOVER,
            bordercolor=BORDER,
            font=dict(family="Inter, sans-serif", size=12, color=TEXT_PRI)
        )
    )
)


def _color(i: int) -> str:
    return RESORT_COLORS[i % len(RESORT_COLORS)]


def build_forecast_figure(aligned: AlignedForecast, names: Dict[str, str], highlight: Optional[str] = None) -> go.Figure:
    """Step lines of cumulative predicted snowfall, the forecast leader drawn on top."""
    fig = go.Figure()
    table = aligned.table
    highlight = highlight or aligned.leader

    for i, rid in enumerate(table.columns):
        is_lead = rid == highlight
        fig.add_trace(go.Scatter(
            x=table.index,
            y=table[rid],
            mode="lines",
            line_shape="hv",
            name=names.get(rid, rid),
            line=dict(color=_color(i), width=4 if is_lead else 1.5),
            opacity=1.0 if is_lead or highlight is None else 0.45,
            hovertemplate="%{y:.1f}\"<extra>" + names.get(rid, rid) + "</extra>",
        ))

    fig.update_layout(
        template=PLOTLY_TEMPLATE,
        height=380,
        xaxis=dict(title="Hours from now", dtick=12),
        yaxis=dict(title="Cumulative snowfall (in)", rangemode="tozero"),
    )
    return fig


def build_score_figure(result: RankResult, names: Dict[str, str]) -> go.Figure:
    ordered = result.ordered()
    fig = go.Figure(go.Bar(
        x=[score for _, score in ordered],
        y=[names.get(rid, rid) for rid, _ in ordered],
        orientation="h",
        marker_color=[ACCENT_TEAL if rid == result.winner else "rgba(56,189,248,0.35)" for rid, _ in ordered],
        hovertemplate="Score %{x:.2f}<extra></extra>",
    ))
    fig.update_layout(
        template=PLOTLY_TEMPLATE,
        height=60 + 36 * len(ordered),
        yaxis=dict(autorange="reversed"),
        hovermode="closest",
    )
    return fig


def build_resort_map(registry: ResortRegistry, winner: Optional[str] = None) -> go.Figure:
    resorts = registry.resorts
    fig = go.Figure(go.Scattergeo(
        lat=[r.lat for r in resorts],
        lon=[r.lon for r in resorts],
        text=[r.name for r in resorts],
        mode="markers+text",
        textposition="top center",
        marker=dict(
            size=[18 if r.id == winner else 10 for r in resorts],
            color=[ACCENT_ROSE if r.id == winner else ACCENT_BLUE for r in resorts],
            line=dict(width=1, color=BORDER),
        ),
        hoverinfo="text",
    ))
    fig.update_geos(
        scope="usa",
        fitbounds="locations",
        showland=True,
        landcolor="rgba(30, 30, 35, 0.55)",
        bgcolor="rgba(0,0,0,0)",
    )
    fig.update_layout(template=PLOTLY_TEMPLATE, height=360, hovermode="closest")
    return fig
