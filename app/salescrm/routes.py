from flask import Blueprint, g, redirect, render_template, request, url_for

from app.salescrm.db import db_session
from app.salescrm.modules.activities.service import list_activities
from app.salescrm.modules.reports import charts
from app.salescrm.modules.reports.service import dashboard_stats, deal_amount_stats
from app.salescrm.rbac import current_sales_rep, is_manager_or_admin, require_login, scope_for
from app.salescrm.utils import parse_flag

bp = Blueprint("routes", __name__)

DASHBOARD_VIEWS = ("in_progress", "won")
RECENT_ACTIVITY_LIMIT = 5


@bp.get("/")
def index():
    if getattr(g, "current_user", None):
        return redirect(url_for("routes.dashboard"))
    return render_template("public/index.html")


@bp.get("/dashboard")
@require_login
def dashboard():
    s = db_session()
    rep = current_sales_rep()
    view_all = parse_flag(request.args, "all") and is_manager_or_admin(rep)
    view = request.args.get("view") if request.args.get("view") in DASHBOARD_VIEWS else "in_progress"
    scope = scope_for(rep, view_all)

    stats = dashboard_stats(s, scope=scope)
    amounts = deal_amount_stats(s, scope=scope)
    return render_template(
        "dashboard.html",
        stats=stats,
        amounts=amounts,
        view=view,
        view_all=view_all,
        amount_chart=charts.chart_spec(charts.deal_amount_chart(amounts, view)) if amounts else None,
        monthly_chart=charts.chart_spec(charts.monthly_won_chart(amounts["monthly"])) if amounts else None,
        recent_activities=list_activities(s, scope=scope, limit=RECENT_ACTIVITY_LIMIT),
    )


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO probes. No DB access, minimal overhead.
    """
    return "ok", 200
