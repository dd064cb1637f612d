from __future__ import annotations

from datetime import date

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.salescrm.constants import ACTIVITY_TYPES
from app.salescrm.db import db_session
from app.salescrm.models import User
from app.salescrm.modules.activities.service import (
    create_activity,
    delete_activity,
    get_activity,
    list_activities,
    update_activity,
    validate_activity_payload,
)
from app.salescrm.modules.customers.service import customer_options, get_customer
from app.salescrm.modules.deals.service import deal_options, get_deal
from app.salescrm.modules.reports.metrics import activity_type_counts
from app.salescrm.rbac import (
    current_sales_rep,
    is_manager_or_admin,
    not_found,
    owner_for,
    require_login,
    scope_for,
)
from app.salescrm.utils import paginate, parse_flag, parse_int, parse_page

bp = Blueprint("activities", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _require_rep():
    rep = current_sales_rep()
    if rep is None:
        g.missing_role = "sales rep profile"
        abort(403)
    return rep


def _payload() -> dict[str, str | None]:
    return {
        "description": request.form.get("description"),
        "activity_type": request.form.get("activity_type"),
        "date": request.form.get("date"),
        "customer_id": request.form.get("customer_id"),
        "deal_id": request.form.get("deal_id"),
    }


def _load(activity_id: int):
    s = db_session()
    a = get_activity(s, activity_id, scope=scope_for(current_sales_rep(), view_all=True))
    if not a:
        not_found(url_for("activities.activities_list"))
    return a


def _form(activity, payload=None):
    s = db_session()
    scope = scope_for(current_sales_rep(), view_all=True)
    payload = payload or {}
    if activity is None and not payload:
        payload = {
            "date": date.today().isoformat(),
            "activity_type": "visit",
            "customer_id": request.args.get("customer_id"),
            "deal_id": request.args.get("deal_id"),
        }
    return render_template(
        "activities/form.html",
        activity=activity,
        payload=payload,
        customers=customer_options(s, scope=scope),
        deals=deal_options(s, scope=scope),
        activity_types=ACTIVITY_TYPES,
    )


def _check_refs(payload) -> bool:
    """Customer must be visible; an optional deal must be visible and belong to that customer."""
    s = db_session()
    scope = scope_for(current_sales_rep(), view_all=True)
    cid = parse_int(payload.get("customer_id"))
    if get_customer(s, cid, scope=scope) is None:  # type: ignore[arg-type]
        flash("customer_id: Customer not found.", "danger")
        return False
    deal_id = parse_int(payload.get("deal_id"))
    if deal_id is not None:
        d = get_deal(s, deal_id, scope=scope)
        if d is None or d.customer_id != cid:
            flash("deal_id: Deal not found for this customer.", "danger")
            return False
    return True


@bp.get("/activities")
@require_login
def activities_list():
    s = db_session()
    rep = current_sales_rep()
    view_all = parse_flag(request.args, "all")
    q = (request.args.get("q") or "").strip()
    activity_type = (request.args.get("type") or "").strip()
    activities = list_activities(s, scope=scope_for(rep, view_all), q=q, activity_type=activity_type)
    return render_template(
        "activities/list.html",
        page=paginate(activities, parse_page(request.args)),
        counts=activity_type_counts(activities),
        q=q,
        activity_type=activity_type,
        activity_types=ACTIVITY_TYPES,
        view_all=view_all and is_manager_or_admin(rep),
    )


@bp.get("/activities/new")
@require_login
def activities_new_get():
    _require_rep()
    return _form(None)


@bp.post("/activities/new")
@require_login
def activities_new_post():
    s = db_session()
    u = _current_user()
    rep = _require_rep()
    payload = _payload()
    errs = validate_activity_payload(payload)
    if errs:
        flash("; ".join([f"{e.field}: {e.message}" for e in errs]), "danger")
        return _form(None, payload), 400
    if not _check_refs(payload):
        return _form(None, payload), 400
    try:
        a = create_activity(s, payload, user=u, sales_rep_id=owner_for(rep, None))
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to create activity")
        s.rollback()
        flash("Could not save the activity. Please try again.", "danger")
        return _form(None, payload), 500
    flash("Activity saved.", "success")
    return redirect(url_for("activities.activity_detail", activity_id=a.id))


@bp.get("/activities/<int:activity_id>")
@require_login
def activity_detail(activity_id: int):
    return render_template("activities/detail.html", activity=_load(activity_id))


@bp.get("/activities/<int:activity_id>/edit")
@require_login
def activity_edit_get(activity_id: int):
    return _form(_load(activity_id))


@bp.post("/activities/<int:activity_id>/edit")
@require_login
def activity_edit_post(activity_id: int):
    s = db_session()
    u = _current_user()
    a = _load(activity_id)
    payload = _payload()
    errs = validate_activity_payload(payload)
    if errs:
        flash("; ".join([f"{e.field}: {e.message}" for e in errs]), "danger")
        return _form(a, payload), 400
    if not _check_refs(payload):
        return _form(a, payload), 400
    try:
        update_activity(s, a, payload, user=u)
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to update activity %s", activity_id)
        s.rollback()
        flash("Could not save the activity. Please try again.", "danger")
        return _form(a, payload), 500
    flash("Activity updated.", "success")
    return redirect(url_for("activities.activity_detail", activity_id=a.id))


@bp.post("/activities/<int:activity_id>/delete")
@require_login
def activity_delete(activity_id: int):
    s = db_session()
    u = _current_user()
    a = _load(activity_id)
    try:
        delete_activity(s, a, user=u)
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to delete activity %s", activity_id)
        s.rollback()
        flash("Could not delete the activity. Please try again.", "danger")
        return redirect(url_for("activities.activity_detail", activity_id=activity_id))
    flash("Activity deleted.", "success")
    return redirect(url_for("activities.activities_list"))
