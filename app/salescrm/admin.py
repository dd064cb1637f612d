from datetime import date, datetime, time, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.salescrm.audit import record_event
from app.salescrm.constants import (
    ACTIVITY_TYPES,
    PERIOD_LABELS,
    REPORT_PERIODS,
    ROLE_ADMIN,
    ROLE_LABELS,
    ROLE_MANAGER,
    ROLES,
)
from app.salescrm.db import db_session
from app.salescrm.models import AuditEvent, User
from app.salescrm.modules.reports.service import performance_report
from app.salescrm.modules.sales_reps.service import delete_sales_rep, get_sales_rep, list_sales_reps, update_role
from app.salescrm.rbac import not_found, require_role

bp = Blueprint("admin", __name__)

AUDIT_LIMIT = 200


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/")
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def index():
    """Sales performance for the selected period (deals by last update, activities by date)."""
    s = db_session()
    period = (request.args.get("period") or "").strip()
    if period not in REPORT_PERIODS:
        period = "month"
    report = performance_report(s, period=period)
    return render_template(
        "admin/index.html",
        report=report,
        period=period,
        periods=REPORT_PERIODS,
        period_labels=PERIOD_LABELS,
        activity_types=ACTIVITY_TYPES,
    )


# ============================================================================
# USER MANAGEMENT (Admin Only)
# ============================================================================


@bp.get("/users")
@require_role(ROLE_ADMIN)
def users_list():
    s = db_session()
    reps = list_sales_reps(s)
    rep_user_ids = {r.user_id for r in reps if r.user_id}
    # Accounts that never got a sales rep profile (e.g. created before signup made one).
    orphan_users = [u for u in s.query(User).order_by(User.email.asc()).all() if u.id not in rep_user_ids]
    return render_template(
        "admin/users/list.html",
        reps=reps,
        orphan_users=orphan_users,
        roles=ROLES,
        role_labels=ROLE_LABELS,
    )


@bp.post("/users/<int:sales_rep_id>/role")
@require_role(ROLE_ADMIN)
def users_update_role(sales_rep_id: int):
    s = db_session()
    u = _current_user()
    rep = get_sales_rep(s, sales_rep_id)
    if not rep:
        not_found(url_for("admin.users_list"))
    if rep.user_id == u.id:
        flash("You cannot change your own role.", "danger")
        return redirect(url_for("admin.users_list"))
    errs = update_role(s, rep, (request.form.get("role") or "").strip(), user=u)
    if errs:
        flash("; ".join([f"{e.field}: {e.message}" for e in errs]), "danger")
        return redirect(url_for("admin.users_list"))
    s.commit()
    flash(f"Role updated for {rep.name}.", "success")
    return redirect(url_for("admin.users_list"))


@bp.post("/users/<int:sales_rep_id>/active")
@require_role(ROLE_ADMIN)
def users_update_active(sales_rep_id: int):
    s = db_session()
    u = _current_user()
    rep = get_sales_rep(s, sales_rep_id)
    if not rep or not rep.user:
        not_found(url_for("admin.users_list"))
    if rep.user_id == u.id:
        flash("You cannot deactivate your own account.", "danger")
        return redirect(url_for("admin.users_list"))
    before = rep.user.is_active
    rep.user.is_active = request.form.get("is_active") == "1"
    record_event(
        s,
        actor=u,
        action="user.update",
        entity_type="User",
        entity_id=str(rep.user.id),
        metadata={"before": {"is_active": before}, "after": {"is_active": rep.user.is_active}},
    )
    s.commit()
    flash(f"Account {'activated' if rep.user.is_active else 'deactivated'} for {rep.email}.", "success")
    return redirect(url_for("admin.users_list"))


@bp.post("/users/<int:sales_rep_id>/delete")
@require_role(ROLE_ADMIN)
def users_delete(sales_rep_id: int):
    s = db_session()
    u = _current_user()
    rep = get_sales_rep(s, sales_rep_id)
    if not rep:
        not_found(url_for("admin.users_list"))
    name = rep.name
    try:
        counts = delete_sales_rep(s, rep, user=u)
        s.commit()
    except ValueError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("admin.users_list"))
    except SQLAlchemyError:
        current_app.logger.exception("Failed to delete sales rep %s", sales_rep_id)
        s.rollback()
        flash("Could not delete the user. Please try again.", "danger")
        return redirect(url_for("admin.users_list"))
    flash(
        f"Deleted {name} ({counts['customers']} customers, {counts['deals']} deals, "
        f"{counts['activities']} activities).",
        "success",
    )
    return redirect(url_for("admin.users_list"))


# ============================================================================
# AUDIT TRAIL (Admin Only)
# ============================================================================


@bp.get("/audit")
@require_role(ROLE_ADMIN)
def audit_list():
    """
    Minimal audit trail UI (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(AUDIT_LIMIT).all()
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )
