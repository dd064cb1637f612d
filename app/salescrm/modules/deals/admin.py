from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.salescrm.constants import DEAL_CATEGORIES, DEAL_STATUSES
from app.salescrm.db import db_session
from app.salescrm.models import User
from app.salescrm.modules.activities.models import Activity
from app.salescrm.modules.customers.service import customer_options, get_customer
from app.salescrm.modules.deals.service import (
    category_options,
    create_deal,
    delete_deal,
    get_deal,
    list_deals,
    update_deal,
    validate_deal_payload,
)
from app.salescrm.modules.reports.metrics import deal_status_counts, deal_totals
from app.salescrm.modules.sales_reps.service import list_departments, list_sales_reps
from app.salescrm.rbac import (
    current_sales_rep,
    is_manager_or_admin,
    not_found,
    owner_for,
    require_login,
    scope_for,
)
from app.salescrm.utils import paginate, parse_flag, parse_int, parse_page

bp = Blueprint("deals", __name__)


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
        "name": request.form.get("name"),
        "customer_id": request.form.get("customer_id"),
        "status": request.form.get("status"),
        "amount": request.form.get("amount"),
        "gross_profit": request.form.get("gross_profit"),
        "category": request.form.get("category"),
        "description": request.form.get("description"),
        "expected_close_date": request.form.get("expected_close_date"),
        "sales_rep_id": request.form.get("sales_rep_id"),
    }


def _load(deal_id: int):
    s = db_session()
    d = get_deal(s, deal_id, scope=scope_for(current_sales_rep(), view_all=True))
    if not d:
        not_found(url_for("deals.deals_list"))
    return d


def _form(deal, payload=None):
    s = db_session()
    rep = current_sales_rep()
    privileged = is_manager_or_admin(rep)
    payload = payload or {}
    if deal is None and not payload.get("customer_id"):
        payload = {**payload, "customer_id": request.args.get("customer_id")}
    return render_template(
        "deals/form.html",
        deal=deal,
        payload=payload,
        customers=customer_options(s, scope=scope_for(rep, view_all=True)),
        reps=list_sales_reps(s) if privileged else [],
        statuses=DEAL_STATUSES,
        categories=DEAL_CATEGORIES,
    )


def _check_customer(payload) -> bool:
    """The referenced customer must exist and be visible to the editing rep."""
    s = db_session()
    cid = parse_int(payload.get("customer_id"))
    if cid is None:
        return True
    if get_customer(s, cid, scope=scope_for(current_sales_rep(), view_all=True)) is None:
        flash("customer_id: Customer not found.", "danger")
        return False
    return True


@bp.get("/deals")
@require_login
def deals_list():
    s = db_session()
    rep = current_sales_rep()
    privileged = is_manager_or_admin(rep)
    view_all = parse_flag(request.args, "all")
    q = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()
    category = (request.args.get("category") or "").strip()
    rep_filter = parse_int(request.args.get("sales_rep_id")) if privileged else None
    dept_filter = parse_int(request.args.get("department_id")) if privileged else None

    deals = list_deals(
        s,
        scope=scope_for(rep, view_all),
        q=q,
        status=status,
        category=category,
        sales_rep_id=rep_filter,
        department_id=dept_filter,
    )
    page = paginate(deals, parse_page(request.args))
    return render_template(
        "deals/list.html",
        page=page,
        totals=deal_totals(deals),
        q=q,
        status=status,
        category=category,
        sales_rep_id=rep_filter,
        department_id=dept_filter,
        view_all=view_all and privileged,
        statuses=DEAL_STATUSES,
        categories=sorted(set(DEAL_CATEGORIES) | set(category_options(s))),
        reps=list_sales_reps(s) if privileged else [],
        departments=list_departments(s) if privileged else [],
    )


@bp.get("/my-deals")
@require_login
def my_deals():
    s = db_session()
    rep = current_sales_rep()
    q = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()
    deals = list_deals(s, scope=scope_for(rep), q=q, status=status)
    all_mine = list_deals(s, scope=scope_for(rep))
    return render_template(
        "deals/my_deals.html",
        page=paginate(deals, parse_page(request.args)),
        totals=deal_totals(all_mine),
        status_counts=deal_status_counts(all_mine),
        q=q,
        status=status,
        statuses=DEAL_STATUSES,
    )


@bp.get("/deals/new")
@require_login
def deals_new_get():
    _require_rep()
    return _form(None)


@bp.post("/deals/new")
@require_login
def deals_new_post():
    s = db_session()
    u = _current_user()
    rep = _require_rep()
    payload = _payload()
    errs = validate_deal_payload(payload)
    if errs:
        flash("; ".join([f"{e.field}: {e.message}" for e in errs]), "danger")
        return _form(None, payload), 400
    if not _check_customer(payload):
        return _form(None, payload), 400
    try:
        d = create_deal(s, payload, user=u, sales_rep_id=owner_for(rep, parse_int(payload["sales_rep_id"])))
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to create deal")
        s.rollback()
        flash("Could not save the deal. Please try again.", "danger")
        return _form(None, payload), 500
    flash("Deal saved.", "success")
    return redirect(url_for("deals.deal_detail", deal_id=d.id))


@bp.get("/deals/<int:deal_id>")
@require_login
def deal_detail(deal_id: int):
    s = db_session()
    d = _load(deal_id)
    activities = (
        s.query(Activity)
        .filter(Activity.deal_id == d.id)
        .order_by(Activity.date.desc(), Activity.id.desc())
        .all()
    )
    return render_template("deals/detail.html", deal=d, activities=activities)


@bp.get("/deals/<int:deal_id>/edit")
@require_login
def deal_edit_get(deal_id: int):
    return _form(_load(deal_id))


@bp.post("/deals/<int:deal_id>/edit")
@require_login
def deal_edit_post(deal_id: int):
    s = db_session()
    u = _current_user()
    rep = _require_rep()
    d = _load(deal_id)
    payload = _payload()
    errs = validate_deal_payload(payload)
    if errs:
        flash("; ".join([f"{e.field}: {e.message}" for e in errs]), "danger")
        return _form(d, payload), 400
    if not _check_customer(payload):
        return _form(d, payload), 400
    requested = parse_int(payload["sales_rep_id"])
    try:
        update_deal(
            s,
            d,
            payload,
            user=u,
            sales_rep_id=requested if (requested and is_manager_or_admin(rep)) else None,
        )
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to update deal %s", deal_id)
        s.rollback()
        flash("Could not save the deal. Please try again.", "danger")
        return _form(d, payload), 500
    flash("Deal updated.", "success")
    return redirect(url_for("deals.deal_detail", deal_id=d.id))


@bp.post("/deals/<int:deal_id>/delete")
@require_login
def deal_delete(deal_id: int):
    s = db_session()
    u = _current_user()
    d = _load(deal_id)
    try:
        delete_deal(s, d, user=u)
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to delete deal %s", deal_id)
        s.rollback()
        flash("Could not delete the deal. Please try again.", "danger")
        return redirect(url_for("deals.deal_detail", deal_id=deal_id))
    flash("Deal deleted.", "success")
    return redirect(url_for("deals.deals_list"))
