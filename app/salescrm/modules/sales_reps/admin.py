from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from app.salescrm.audit import record_event
from app.salescrm.constants import (
    COUNT_DEPARTMENT_VIEWS,
    DEPARTMENT_VIEWS,
    METRIC_LABELS,
    METRIC_WON_AMOUNT,
    METRICS,
    ROLE_ADMIN,
    ROLE_MANAGER,
)
from app.salescrm.db import db_session
from app.salescrm.models import User
from app.salescrm.modules.activities.models import Activity
from app.salescrm.modules.deals.models import Deal
from app.salescrm.modules.reports import charts
from app.salescrm.modules.reports.metrics import activity_type_counts, leaderboard, metric_value, rank_by
from app.salescrm.modules.reports.service import (
    department_performances,
    sales_rep_performance_for,
    sales_rep_performances,
)
from app.salescrm.modules.sales_reps.service import (
    assign_group,
    create_group,
    get_department,
    get_group,
    get_sales_rep,
    list_department_groups,
    list_departments,
    list_sales_reps,
    update_profile,
)
from app.salescrm.rbac import current_sales_rep, is_manager_or_admin, not_found, require_login, require_role
from app.salescrm.utils import normalize_text, parse_int

bp = Blueprint("sales_reps", __name__)

MIN_PASSWORD_LENGTH = 8


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# =============================================================================
# SALES REPS
# =============================================================================


@bp.get("/sales-reps")
@require_login
def sales_reps_list():
    s = db_session()
    rep = current_sales_rep()
    if is_manager_or_admin(rep):
        perfs = rank_by(sales_rep_performances(s), key=lambda p: metric_value(p, METRIC_WON_AMOUNT))
    else:
        mine = sales_rep_performance_for(s, rep.id) if rep else None
        perfs = [mine] if mine else []
    return render_template("sales_reps/list.html", perfs=perfs)


@bp.get("/sales-reps/<int:sales_rep_id>")
@require_login
def sales_rep_detail(sales_rep_id: int):
    s = db_session()
    rep = current_sales_rep()
    if not is_manager_or_admin(rep) and (rep is None or rep.id != sales_rep_id):
        not_found(url_for("sales_reps.sales_reps_list"))
    target = get_sales_rep(s, sales_rep_id)
    if not target:
        not_found(url_for("sales_reps.sales_reps_list"))
    perf = sales_rep_performance_for(s, sales_rep_id)
    deals = (
        s.query(Deal)
        .filter(Deal.sales_rep_id == sales_rep_id)
        .order_by(Deal.updated_at.desc(), Deal.id.desc())
        .all()
    )
    activities = (
        s.query(Activity)
        .filter(Activity.sales_rep_id == sales_rep_id)
        .order_by(Activity.date.desc(), Activity.id.desc())
        .all()
    )
    return render_template(
        "sales_reps/detail.html",
        sales_rep=target,
        perf=perf,
        deals=deals,
        activities=activities,
        activity_counts=activity_type_counts(activities),
    )


@bp.get("/sales-reps/compare")
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def sales_reps_compare():
    s = db_session()
    metric = (request.args.get("metric") or "").strip()
    if metric not in METRICS:
        metric = METRIC_WON_AMOUNT
    perfs = rank_by(sales_rep_performances(s), key=lambda p: metric_value(p, metric))
    rows = leaderboard(perfs, metric, limit=None)
    return render_template(
        "sales_reps/compare.html",
        perfs=perfs,
        rows=rows,
        metric=metric,
        metrics=METRICS,
        metric_labels=METRIC_LABELS,
        amount_chart=charts.chart_spec(charts.rep_comparison_chart(perfs, kind="amount")),
        profit_chart=charts.chart_spec(charts.rep_comparison_chart(perfs, kind="profit")),
        ranking_chart=charts.chart_spec(charts.ranking_bar_chart(rows, value_title=METRIC_LABELS[metric])),
        share_chart=charts.chart_spec(charts.share_pie_chart(rows, value_title=METRIC_LABELS[metric])),
    )


# =============================================================================
# DEPARTMENTS
# =============================================================================


@bp.get("/departments")
@require_login
def departments_list():
    s = db_session()
    perfs = department_performances(s)
    return render_template("sales_reps/departments.html", perfs=perfs, data_available=bool(perfs))


@bp.get("/departments/compare")
@require_login
def departments_compare():
    s = db_session()
    view = (request.args.get("view") or "").strip()
    if view not in DEPARTMENT_VIEWS:
        view = "revenue"
    attr, label = DEPARTMENT_VIEWS[view]
    perfs = rank_by(department_performances(s), key=lambda p: getattr(p.totals, attr))
    return render_template(
        "sales_reps/departments_compare.html",
        perfs=perfs,
        view=view,
        views=DEPARTMENT_VIEWS,
        label=label,
        is_count=view in COUNT_DEPARTMENT_VIEWS,
        bar_chart=charts.chart_spec(
            charts.department_bar_chart(perfs, attr, label, is_count=view in COUNT_DEPARTMENT_VIEWS)
        ),
        pie_chart=charts.chart_spec(charts.department_pie_chart(perfs, attr, label)),
    )


# =============================================================================
# GROUP MANAGEMENT
# =============================================================================


@bp.get("/group-management")
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def group_management():
    s = db_session()
    departments = list_departments(s)
    department_id = parse_int(request.args.get("department_id"))
    if department_id is None and departments:
        department_id = departments[0].id
    department = get_department(s, department_id) if department_id else None
    return render_template(
        "sales_reps/group_management.html",
        departments=departments,
        department=department,
        groups=list_department_groups(s, department.id) if department else [],
        reps=list_sales_reps(s, department_id=department.id) if department else [],
    )


@bp.post("/group-management/assign")
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def group_management_assign():
    s = db_session()
    u = _current_user()
    rep = get_sales_rep(s, parse_int(request.form.get("sales_rep_id")) or 0)
    if not rep:
        not_found(url_for("sales_reps.group_management"))
    group_id = parse_int(request.form.get("group_id"))
    group = get_group(s, group_id) if group_id else None
    if group_id and group is None:
        flash("Group not found.", "danger")
        return redirect(url_for("sales_reps.group_management", department_id=rep.department_id))
    errs = assign_group(s, rep, group, user=u)
    if errs:
        flash("; ".join([f"{e.field}: {e.message}" for e in errs]), "danger")
        s.rollback()
        return redirect(url_for("sales_reps.group_management", department_id=rep.department_id))
    try:
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to assign group for sales rep %s", rep.id)
        s.rollback()
        flash("Could not update the group. Please try again.", "danger")
        return redirect(url_for("sales_reps.group_management", department_id=rep.department_id))
    flash(f"{rep.name}: group updated.", "success")
    return redirect(url_for("sales_reps.group_management", department_id=rep.department_id))


@bp.post("/group-management/groups")
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def group_management_create():
    s = db_session()
    u = _current_user()
    department = get_department(s, parse_int(request.form.get("department_id")) or 0)
    if not department:
        not_found(url_for("sales_reps.group_management"))
    name = normalize_text(request.form.get("name"))
    if not name:
        flash("name: Group name is required.", "danger")
        return redirect(url_for("sales_reps.group_management", department_id=department.id))
    try:
        create_group(s, department, name, user=u)
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to create group in department %s", department.id)
        s.rollback()
        flash("Could not create the group. Please try again.", "danger")
        return redirect(url_for("sales_reps.group_management", department_id=department.id))
    flash("Group created.", "success")
    return redirect(url_for("sales_reps.group_management", department_id=department.id))


# =============================================================================
# PROFILE
# =============================================================================


def _profile_page(status: int = 200):
    s = db_session()
    rep = current_sales_rep()
    departments = list_departments(s)
    groups = list_department_groups(s, rep.department_id) if rep and rep.department_id else []
    return render_template("sales_reps/profile.html", sales_rep=rep, departments=departments, groups=groups), status


@bp.get("/profile")
@require_login
def profile_get():
    return _profile_page()


@bp.post("/profile")
@require_login
def profile_post():
    s = db_session()
    u = _current_user()
    rep = current_sales_rep()
    if rep is None:
        g.missing_role = "sales rep profile"
        abort(403)
    department_id = parse_int(request.form.get("department_id"))
    department = get_department(s, department_id) if department_id else None
    group_id = parse_int(request.form.get("group_id"))
    group = get_group(s, group_id) if group_id else None
    # A group left over from the previous department is dropped rather than rejected.
    if group is not None and (department is None or group.department_id != department.id):
        group = None
    errs = update_profile(s, rep, name=request.form.get("name") or "", department=department, group=group, user=u)
    if errs:
        s.rollback()
        flash("; ".join([f"{e.field}: {e.message}" for e in errs]), "danger")
        return _profile_page(400)
    try:
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to update profile of sales rep %s", rep.id)
        s.rollback()
        flash("Could not save your profile. Please try again.", "danger")
        return _profile_page(500)
    flash("Profile updated.", "success")
    return redirect(url_for("sales_reps.profile_get"))


@bp.post("/profile/password")
@require_login
def profile_password_post():
    s = db_session()
    u = _current_user()
    current = request.form.get("current_password") or ""
    new = request.form.get("new_password") or ""
    confirm = request.form.get("confirm_password") or ""
    if not check_password_hash(u.password_hash, current):
        flash("Current password is incorrect.", "danger")
        return _profile_page(400)
    if len(new) < MIN_PASSWORD_LENGTH:
        flash(f"New password must be at least {MIN_PASSWORD_LENGTH} characters.", "danger")
        return _profile_page(400)
    if new != confirm:
        flash("New passwords do not match.", "danger")
        return _profile_page(400)
    u.password_hash = generate_password_hash(new)
    record_event(s, actor=u, action="auth.password_change", entity_type="User", entity_id=str(u.id))
    s.commit()
    flash("Password changed.", "success")
    return redirect(url_for("sales_reps.profile_get"))
