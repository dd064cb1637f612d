"""
Altair chart builders for the dashboard and report pages.

Every builder takes already-aggregated rows (see reports.metrics) and returns an
alt.Chart. Views turn charts into Vega-Lite JSON with chart_spec() and the
templates render them with vega-embed.

Usage:
    chart = monthly_won_chart(stats["monthly"])
    return render_template("...", chart_spec=chart_spec(chart))
"""

import logging
from collections.abc import Iterable, Sequence
from typing import Any

import altair as alt
import pandas as pd

from app.salescrm.modules.reports.metrics import DepartmentPerformance, SalesRepPerformance, to_number

logger = logging.getLogger(__name__)

COLORS = {
    "in_progress": "#3b82f6",
    "won": "#10b981",
    "profit": "#8b5cf6",
    "lost": "#ef4444",
}

PALETTE = [
    "#0088FE", "#00C49F", "#FFBB28", "#FF8042", "#8884d8", "#82ca9d",
    "#ffc658", "#d0ed57", "#a4de6c", "#FF6B6B", "#C9CBA3", "#87BFFF",
]

CHART_WIDTH = "container"
CHART_HEIGHT = 320


def chart_spec(chart: alt.TopLevelMixin) -> dict[str, Any]:
    """Vega-Lite dict for embedding; the template serialises it with |tojson."""
    return chart.to_dict()


def _empty_chart(message: str = "No data") -> alt.Chart:
    df = pd.DataFrame({"text": [message]})
    return (
        alt.Chart(df)
        .mark_text(size=14, color="#6b7280")
        .encode(text="text:N")
        .properties(width=CHART_WIDTH, height=CHART_HEIGHT)
    )


# =============================================================================
# DASHBOARD
# =============================================================================


def deal_amount_chart(stats: dict[str, Any], view: str = "in_progress") -> alt.Chart:
    """
    Amount vs gross profit for the selected tab.
    in_progress: the two pipeline totals; won: monthly won amount and profit side by side.
    """
    if view == "won":
        monthly = stats.get("monthly") or []
        df = pd.DataFrame(
            [
                {"month": m["month"], "series": series, "value": to_number(m[key])}
                for m in monthly
                for series, key in (("Amount", "amount"), ("Gross profit", "profit"))
            ],
            columns=["month", "series", "value"],
        )
        if df.empty:
            return _empty_chart()
        return (
            alt.Chart(df)
            .mark_bar()
            .encode(
                x=alt.X("month:N", title="Month", sort=None),
                xOffset=alt.XOffset("series:N"),
                y=alt.Y("value:Q", title="Amount (¥)", axis=alt.Axis(format=",.0f")),
                color=alt.Color(
                    "series:N",
                    scale=alt.Scale(domain=["Amount", "Gross profit"], range=[COLORS["won"], COLORS["profit"]]),
                    legend=alt.Legend(title=None, orient="bottom"),
                ),
                tooltip=[
                    alt.Tooltip("month:N", title="Month"),
                    alt.Tooltip("series:N", title="Series"),
                    alt.Tooltip("value:Q", title="Value", format=",.0f"),
                ],
            )
            .properties(width=CHART_WIDTH, height=CHART_HEIGHT)
        )

    section = stats.get("in_progress") or {}
    df = pd.DataFrame(
        [
            {"series": "Amount", "value": to_number(section.get("total"))},
            {"series": "Gross profit", "value": to_number(section.get("profit_total"))},
        ]
    )
    return (
        alt.Chart(df)
        .mark_bar(cornerRadiusTopLeft=4, cornerRadiusTopRight=4)
        .encode(
            x=alt.X("series:N", title=None, sort=None),
            y=alt.Y("value:Q", title="Amount (¥)", axis=alt.Axis(format=",.0f")),
            color=alt.Color(
                "series:N",
                scale=alt.Scale(domain=["Amount", "Gross profit"], range=[COLORS["in_progress"], COLORS["profit"]]),
                legend=None,
            ),
            tooltip=[alt.Tooltip("series:N", title="Series"), alt.Tooltip("value:Q", title="Value", format=",.0f")],
        )
        .properties(width=CHART_WIDTH, height=CHART_HEIGHT)
    )


def monthly_won_chart(monthly: Sequence[dict[str, Any]]) -> alt.Chart:
    """Bars for won amount per month with a line for the deal count."""
    df = pd.DataFrame(
        [{"month": m["month"], "amount": to_number(m["amount"]), "count": int(m["count"])} for m in monthly],
        columns=["month", "amount", "count"],
    )
    if df.empty:
        return _empty_chart()

    base = alt.Chart(df).encode(x=alt.X("month:N", title="Month", sort=None))
    bars = base.mark_bar(color=COLORS["won"], opacity=0.85).encode(
        y=alt.Y("amount:Q", title="Won amount (¥)", axis=alt.Axis(format=",.0f")),
        tooltip=[
            alt.Tooltip("month:N", title="Month"),
            alt.Tooltip("amount:Q", title="Won amount", format=",.0f"),
            alt.Tooltip("count:Q", title="Deals"),
        ],
    )
    line = base.mark_line(color=COLORS["profit"], point=True, strokeWidth=2).encode(
        y=alt.Y("count:Q", title="Won deals"),
    )
    return alt.layer(bars, line).resolve_scale(y="independent").properties(width=CHART_WIDTH, height=CHART_HEIGHT)


# =============================================================================
# RANKINGS
# =============================================================================


def ranking_bar_chart(rows: Sequence[dict[str, Any]], value_title: str = "Value", is_count: bool = False) -> alt.Chart:
    """Horizontal bars, highest first. rows: [{"name": ..., "value": ...}]"""
    df = pd.DataFrame(
        [{"name": r["name"], "value": to_number(r["value"])} for r in rows],
        columns=["name", "value"],
    )
    if df.empty:
        return _empty_chart()
    fmt = ",d" if is_count else ",.0f"
    return (
        alt.Chart(df)
        .mark_bar(color=PALETTE[0])
        .encode(
            y=alt.Y("name:N", title=None, sort="-x"),
            x=alt.X("value:Q", title=value_title, axis=alt.Axis(format=fmt)),
            tooltip=[alt.Tooltip("name:N", title="Name"), alt.Tooltip("value:Q", title=value_title, format=fmt)],
        )
        .properties(width=CHART_WIDTH, height=max(CHART_HEIGHT, 28 * len(df)))
    )


def share_pie_chart(rows: Sequence[dict[str, Any]], value_title: str = "Value") -> alt.Chart:
    """Share of the total per name. Rows with a zero value are left out."""
    df = pd.DataFrame(
        [{"name": r["name"], "value": to_number(r["value"])} for r in rows if to_number(r["value"]) > 0],
        columns=["name", "value"],
    )
    if df.empty:
        return _empty_chart()
    df["share"] = df["value"] / df["value"].sum()
    return (
        alt.Chart(df)
        .mark_arc(innerRadius=50)
        .encode(
            theta=alt.Theta("value:Q", stack=True),
            color=alt.Color("name:N", scale=alt.Scale(range=PALETTE), legend=alt.Legend(title=None)),
            tooltip=[
                alt.Tooltip("name:N", title="Name"),
                alt.Tooltip("value:Q", title=value_title, format=",.0f"),
                alt.Tooltip("share:Q", title="Share", format=".1%"),
            ],
        )
        .properties(width=CHART_WIDTH, height=CHART_HEIGHT)
    )


def rep_comparison_chart(perfs: Iterable[SalesRepPerformance], kind: str = "amount") -> alt.Chart:
    """Won vs in-progress per rep; kind is "amount" or "profit"."""
    won_attr, open_attr = ("won_profit", "in_progress_profit") if kind == "profit" else ("won_amount", "in_progress_amount")
    df = pd.DataFrame(
        [
            {"name": p.name, "series": series, "value": to_number(getattr(p.totals, attr))}
            for p in perfs
            for series, attr in (("Won", won_attr), ("In progress", open_attr))
        ],
        columns=["name", "series", "value"],
    )
    if df.empty:
        return _empty_chart()
    won_color = COLORS["profit"] if kind == "profit" else COLORS["won"]
    return (
        alt.Chart(df)
        .mark_bar()
        .encode(
            x=alt.X("name:N", title=None, sort=None),
            xOffset=alt.XOffset("series:N"),
            y=alt.Y("value:Q", title="Gross profit (¥)" if kind == "profit" else "Amount (¥)", axis=alt.Axis(format=",.0f")),
            color=alt.Color(
                "series:N",
                scale=alt.Scale(domain=["Won", "In progress"], range=[won_color, COLORS["in_progress"]]),
                legend=alt.Legend(title=None, orient="bottom"),
            ),
            tooltip=[
                alt.Tooltip("name:N", title="Sales rep"),
                alt.Tooltip("series:N", title="Series"),
                alt.Tooltip("value:Q", title="Value", format=",.0f"),
            ],
        )
        .properties(width=CHART_WIDTH, height=CHART_HEIGHT)
    )


# =============================================================================
# DEPARTMENTS
# =============================================================================


def department_rows(perfs: Iterable[DepartmentPerformance], attr: str) -> list[dict[str, Any]]:
    return [{"name": p.name, "value": to_number(getattr(p.totals, attr))} for p in perfs]


def department_bar_chart(perfs: Iterable[DepartmentPerformance], attr: str, label: str, is_count: bool = False) -> alt.Chart:
    return ranking_bar_chart(department_rows(perfs, attr), value_title=label, is_count=is_count)


def department_pie_chart(perfs: Iterable[DepartmentPerformance], attr: str, label: str) -> alt.Chart:
    return share_pie_chart(department_rows(perfs, attr), value_title=label)
