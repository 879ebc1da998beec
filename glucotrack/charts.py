from __future__ import annotations

from typing import Dict, List

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .alignment import ChartPoint, PointKind
from .config import (
    BG_CATEGORIES,
    LIGHT_GREEN,
    LIGHT_RED,
    MEAL_ORANGE,
    MILD_YELLOW,
    STRONG_RED,
    TARGET_HIGH,
    TARGET_LOW,
    TARGET_MILD_HIGH,
    TREATMENT_VIOLET,
)
from .state import ChartView, ViewStatus
from .summary import WindowSummary

ChartTheme = Dict[str, str]

CHART_THEMES: Dict[str, ChartTheme] = {
    "dark": {
        "template": "plotly_dark",
        "paper_bg": "#1f2335",
        "plot_bg": "#252a3f",
        "font_color": "#f1f5f9",
        "grid_color": "#343c55",
        "muted_text": "#cbd5f5",
        "legend_bg": "rgba(28, 32, 48, 0.92)",
        "glucose_line": "#60a5fa",
        "marker_outline": "#0f172a",
    },
    "light": {
        "template": "plotly_white",
        "paper_bg": "#fff9ef",
        "plot_bg": "#fff3df",
        "font_color": "#3c2e12",
        "grid_color": "#f3d9a2",
        "muted_text": "#a16207",
        "legend_bg": "rgba(255, 248, 235, 0.9)",
        "glucose_line": "#2563eb",
        "marker_outline": "#fffbeb",
    },
}

_FONT = "JetBrains Mono, Consolas, monospace"


def _get_chart_theme(theme: str) -> ChartTheme:
    return CHART_THEMES.get(theme, CHART_THEMES["dark"])


def _apply_layout(fig: go.Figure, palette: ChartTheme, **layout) -> None:
    fig.update_layout(
        template=palette["template"],
        paper_bgcolor=palette["paper_bg"],
        plot_bgcolor=palette["plot_bg"],
        font=dict(color=palette["font_color"], family=_FONT, size=11),
        title_font=dict(size=14, color=palette["muted_text"]),
        **layout,
    )


def create_placeholder_chart(title: str = "Loading...", height: int = 360, theme: str = "dark") -> go.Figure:
    palette = _get_chart_theme(theme)
    fig = go.Figure()
    _apply_layout(
        fig,
        palette,
        title=dict(text=title, font=dict(size=14, color=palette["muted_text"])),
        xaxis=dict(showgrid=True, gridcolor=palette["grid_color"], showticklabels=False),
        yaxis=dict(showgrid=True, gridcolor=palette["grid_color"], showticklabels=False),
        height=height,
        margin=dict(t=60, r=20, b=40, l=50),
    )
    return fig


def _marker_trace(points: List[ChartPoint], name: str, symbol: str, color: str, outline: str) -> go.Scatter:
    # Events outside the glucose coverage have no y value and are not drawn.
    anchored = [point for point in points if point.plottable]
    return go.Scatter(
        x=[point.timestamp for point in anchored],
        y=[point.glucose_value for point in anchored],
        mode="markers",
        name=name,
        marker=dict(size=12, symbol=symbol, color=color, line=dict(width=2, color=outline)),
        text=[point.label for point in anchored],
        hovertemplate="<b>%{text}</b><br>%{y:.0f} mg/dL<br>%{x}<extra></extra>",
    )


def build_timeline_chart(view: ChartView, theme: str = "dark", height: int = 320) -> go.Figure:
    """Glucose curve for the view's window with meals and treatments pinned on it."""
    if view.status is ViewStatus.ERROR:
        return create_placeholder_chart("Could not load data", height=height, theme=theme)
    if not view.has_data:
        return create_placeholder_chart("No data in this period", height=height, theme=theme)

    palette = _get_chart_theme(theme)
    glucose = [point for point in view.points if point.kind is PointKind.GLUCOSE]
    meals = [point for point in view.points if point.kind is PointKind.MEAL]
    treatments = [point for point in view.points if point.kind is PointKind.TREATMENT]

    fig = go.Figure()
    fig.add_trace(
        go.Scatter(
            x=[point.timestamp for point in glucose],
            y=[point.glucose_value for point in glucose],
            mode="lines",
            line=dict(color=palette["glucose_line"], width=3),
            name="Glucose",
            hovertemplate="<b>%{y:.0f} mg/dL</b><br>%{x}<extra></extra>",
        )
    )
    if meals:
        fig.add_trace(_marker_trace(meals, "Meals", "circle", MEAL_ORANGE, palette["marker_outline"]))
    if treatments:
        fig.add_trace(_marker_trace(treatments, "Treatments", "diamond", TREATMENT_VIOLET, palette["marker_outline"]))

    fig.add_hrect(y0=TARGET_LOW, y1=TARGET_MILD_HIGH, fillcolor=LIGHT_GREEN, opacity=0.1, layer="below", line_width=0)
    fig.add_hrect(y0=TARGET_MILD_HIGH, y1=TARGET_HIGH, fillcolor=MILD_YELLOW, opacity=0.1, layer="below", line_width=0)

    title = view.label if view.status is not ViewStatus.STALE else f"{view.label} (offline)"
    _apply_layout(
        fig,
        palette,
        title=dict(text=title),
        hovermode="closest",
        height=height,
        margin=dict(t=50, r=20, b=40, l=50),
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1, bgcolor=palette["legend_bg"]),
    )
    fig.update_xaxes(
        title=None,
        range=[view.window.start, view.window.end],
        gridcolor=palette["grid_color"],
    )
    fig.update_yaxes(title="Glucose [mg/dL]", gridcolor=palette["grid_color"], title_font=dict(color=palette["muted_text"]))
    return fig


def build_tir_chart(summary: WindowSummary, theme: str = "dark") -> go.Figure:
    if not summary.reading_count:
        return create_placeholder_chart("No data yet", theme=theme)

    tir_data = pd.DataFrame(
        {
            "cat_glucose": BG_CATEGORIES,
            "value": [summary.time_in_range.get(cat, 0.0) for cat in BG_CATEGORIES],
        }
    )
    tir_data["percent_label"] = tir_data["value"].map(lambda share: f"{share * 100:.0f}%")
    value_max = max(tir_data["value"].max(), 0.0001)

    fig = px.bar(
        tir_data,
        x="cat_glucose",
        y="value",
        color="cat_glucose",
        text="percent_label",
        category_orders={"cat_glucose": BG_CATEGORIES},
        color_discrete_map=dict(
            zip(BG_CATEGORIES, [STRONG_RED, LIGHT_RED, LIGHT_GREEN, MILD_YELLOW, LIGHT_RED, STRONG_RED])
        ),
    )

    palette = _get_chart_theme(theme)
    fig.update_traces(
        textposition="outside",
        cliponaxis=False,
        width=0.8,
        textfont=dict(size=12, color=palette["font_color"]),
    )
    fig.update_yaxes(tickformat=".0%", title=None, range=[0, value_max * 1.15], gridcolor=palette["grid_color"])
    fig.update_xaxes(title=None, tickangle=-45, gridcolor=palette["grid_color"])
    _apply_layout(fig, palette, showlegend=False, height=300, margin=dict(t=40, r=20, b=70, l=40))
    return fig


__all__ = ["CHART_THEMES", "build_timeline_chart", "build_tir_chart", "create_placeholder_chart"]
