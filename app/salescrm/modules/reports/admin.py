from __future__ import annotations

import csv
import io
from datetime import date

from flask import Blueprint, g, render_template, request, send_file

from app.salescrm.audit import record_event
from app.salescrm.constants import (
    CATEGORY_ALL,
    CATEGORY_CONSTRUCTION,
    CATEGORY_FILTERS,
    CATEGORY_LABELS,
    CATEGORY_MACHINERY,
    METRIC_LABELS,
    METRIC_WON_AMOUNT,
    METRICS,
    ROLE_ADMIN,
    ROLE_LABELS,
    ROLE_MANAGER,
)
from app.salescrm.db import db_session
from app.salescrm.modules.reports import charts
from app.salescrm.modules.reports.metrics import leaderboard, metric_value, rank_by
from app.salescrm.modules.reports.service import sales_rep_performances
from app.salescrm.modules.sales_reps.service import list_departments
from app.salescrm.rbac import require_role
from app.salescrm.utils import parse_int

bp = Blueprint("reports", __name__)

CHART_TYPES = ("bar", "pie")
TOP_N = 10


def _metric_arg(default: str = METRIC_WON_AMOUNT) -> str:
    metric = (request.args.get("metric") or "").strip()
    return metric if metric in METRICS else default


def _category_arg() -> str:
    category = (request.args.get("category") or "").strip()
    return category if category in CATEGORY_FILTERS else CATEGORY_ALL


def _ranked_performances(department_id: int | None, metric: str, category: str = CATEGORY_ALL):
    s = db_session()
    perfs = sales_rep_performances(s, department_id=department_id)
    return rank_by(perfs, key=lambda p: metric_value(p, metric, category))


@bp.get("/performance")
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def performance():
    s = db_session()
    metric = _metric_arg()
    department_id = parse_int(request.args.get("department_id"))
    perfs = _ranked_performances(department_id, metric)
    return render_template(
        "reports/performance.html",
        perfs=perfs,
        metric=metric,
        metrics=METRICS,
        metric_labels=METRIC_LABELS,
        department_id=department_id,
        departments=list_departments(s),
        machinery=CATEGORY_MACHINERY,
        construction=CATEGORY_CONSTRUCTION,
    )


@bp.get("/performance/export")
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def performance_export():
    s = db_session()
    metric = _metric_arg()
    department_id = parse_int(request.args.get("department_id"))
    perfs = _ranked_performances(department_id, metric)
    dept_names = {d.id: d.name for d in list_departments(s)}

    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(
        [
            "Rank",
            "Sales Rep",
            "Email",
            "Role",
            "Department",
            "Won Deals",
            "Won Amount",
            "Won Gross Profit",
            "In-Progress Deals",
            "In-Progress Amount",
            "In-Progress Gross Profit",
            "Lost Deals",
            f"{CATEGORY_LABELS[CATEGORY_MACHINERY]} Won Amount",
            f"{CATEGORY_LABELS[CATEGORY_CONSTRUCTION]} Won Amount",
            "Activities",
        ]
    )
    for i, p in enumerate(perfs, start=1):
        t = p.totals
        w.writerow(
            [
                i,
                p.name,
                p.email,
                ROLE_LABELS.get(p.role, p.role),
                dept_names.get(p.department_id, "") if p.department_id else "",
                t.won_deals,
                t.won_amount,
                t.won_profit,
                t.in_progress_deals,
                t.in_progress_amount,
                t.in_progress_profit,
                t.lost_deals,
                p.machinery.won_amount,
                p.construction.won_amount,
                p.activities,
            ]
        )

    record_event(
        s,
        actor=g.current_user,
        action="performance.export",
        entity_type="SalesRepPerformance",
        entity_id="export",
        metadata={"metric": metric, "department_id": department_id, "row_count": len(perfs)},
    )
    s.commit()

    # BOM so spreadsheet apps pick up UTF-8 for Japanese names.
    data = out.getvalue().encode("utf-8-sig")
    filename = f"sales_performance_{date.today().strftime('%Y%m%d')}.csv"
    return send_file(
        io.BytesIO(data),
        mimetype="text/csv",
        as_attachment=True,
        download_name=filename,
        max_age=0,
    )


@bp.get("/sales-chart")
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def sales_chart():
    s = db_session()
    metric = _metric_arg()
    category = _category_arg()
    chart_type = request.args.get("chart") if request.args.get("chart") in CHART_TYPES else "bar"
    department_id = parse_int(request.args.get("department_id"))

    perfs = sales_rep_performances(s, department_id=department_id)
    rows = leaderboard(perfs, metric, category, limit=TOP_N)
    label = METRIC_LABELS[metric]
    if chart_type == "pie":
        chart = charts.share_pie_chart(rows, value_title=label)
    else:
        chart = charts.ranking_bar_chart(rows, value_title=label)
    return render_template(
        "reports/sales_chart.html",
        rows=rows,
        chart_spec=charts.chart_spec(chart),
        metric=metric,
        metrics=METRICS,
        metric_labels=METRIC_LABELS,
        category=category,
        categories=CATEGORY_FILTERS,
        category_labels=CATEGORY_LABELS,
        chart_type=chart_type,
        chart_types=CHART_TYPES,
        department_id=department_id,
        departments=list_departments(s),
        data_available=bool(perfs),
    )
