from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.salescrm.db import db_session
from app.salescrm.models import User
from app.salescrm.modules.activities.models import Activity
from app.salescrm.modules.customers.service import (
    create_customer,
    delete_customer,
    get_customer,
    list_customers,
    update_customer,
    validate_customer_payload,
)
from app.salescrm.modules.deals.models import Deal
from app.salescrm.modules.reports.metrics import activity_type_counts, deal_totals
from app.salescrm.modules.sales_reps.service import list_sales_reps
from app.salescrm.rbac import (
    current_sales_rep,
    is_manager_or_admin,
    not_found,
    owner_for,
    require_login,
    scope_for,
)
from app.salescrm.utils import paginate, parse_flag, parse_int, parse_page

bp = Blueprint("customers", __name__)


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
        "industry": request.form.get("industry"),
        "phone": request.form.get("phone"),
        "email": request.form.get("email"),
        "address": request.form.get("address"),
        "sales_rep_id": request.form.get("sales_rep_id"),
    }


def _load(customer_id: int):
    s = db_session()
    rep = current_sales_rep()
    c = get_customer(s, customer_id, scope=scope_for(rep, view_all=True))
    if not c:
        not_found(url_for("customers.customers_list"))
    return c


def _form(customer, payload=None):
    s = db_session()
    rep = current_sales_rep()
    reps = list_sales_reps(s) if is_manager_or_admin(rep) else []
    return render_template("customers/form.html", customer=customer, payload=payload or {}, reps=reps)


@bp.get("/customers")
@require_login
def customers_list():
    s = db_session()
    rep = current_sales_rep()
    view_all = parse_flag(request.args, "all")
    q = (request.args.get("q") or "").strip()
    customers = list_customers(s, scope=scope_for(rep, view_all), q=q)
    page = paginate(customers, parse_page(request.args))
    return render_template(
        "customers/list.html",
        page=page,
        q=q,
        view_all=view_all and is_manager_or_admin(rep),
    )


@bp.get("/customers/new")
@require_login
def customers_new_get():
    _require_rep()
    return _form(None)


@bp.post("/customers/new")
@require_login
def customers_new_post():
    s = db_session()
    u = _current_user()
    rep = _require_rep()
    payload = _payload()
    errs = validate_customer_payload(payload)
    if errs:
        flash("; ".join([f"{e.field}: {e.message}" for e in errs]), "danger")
        return _form(None, payload), 400
    try:
        c = create_customer(s, payload, user=u, sales_rep_id=owner_for(rep, parse_int(payload["sales_rep_id"])))
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to create customer")
        s.rollback()
        flash("Could not save the customer. Please try again.", "danger")
        return _form(None, payload), 500
    flash("Customer saved.", "success")
    return redirect(url_for("customers.customer_detail", customer_id=c.id))


@bp.get("/customers/<int:customer_id>")
@require_login
def customer_detail(customer_id: int):
    s = db_session()
    c = _load(customer_id)
    deals = (
        s.query(Deal)
        .filter(Deal.customer_id == c.id)
        .order_by(Deal.updated_at.desc(), Deal.id.desc())
        .all()
    )
    activities = (
        s.query(Activity)
        .filter(Activity.customer_id == c.id)
        .order_by(Activity.date.desc(), Activity.id.desc())
        .all()
    )
    return render_template(
        "customers/detail.html",
        customer=c,
        deals=deals,
        activities=activities,
        totals=deal_totals(deals),
        activity_counts=activity_type_counts(activities),
    )


@bp.get("/customers/<int:customer_id>/edit")
@require_login
def customer_edit_get(customer_id: int):
    c = _load(customer_id)
    return _form(c)


@bp.post("/customers/<int:customer_id>/edit")
@require_login
def customer_edit_post(customer_id: int):
    s = db_session()
    u = _current_user()
    rep = _require_rep()
    c = _load(customer_id)
    payload = _payload()
    errs = validate_customer_payload(payload)
    if errs:
        flash("; ".join([f"{e.field}: {e.message}" for e in errs]), "danger")
        return _form(c, payload), 400
    requested = parse_int(payload["sales_rep_id"])
    try:
        update_customer(
            s,
            c,
            payload,
            user=u,
            sales_rep_id=requested if (requested and is_manager_or_admin(rep)) else None,
        )
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to update customer %s", customer_id)
        s.rollback()
        flash("Could not save the customer. Please try again.", "danger")
        return _form(c, payload), 500
    flash("Customer updated.", "success")
    return redirect(url_for("customers.customer_detail", customer_id=c.id))


@bp.post("/customers/<int:customer_id>/delete")
@require_login
def customer_delete(customer_id: int):
    s = db_session()
    u = _current_user()
    c = _load(customer_id)
    try:
        delete_customer(s, c, user=u)
        s.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to delete customer %s", customer_id)
        s.rollback()
        flash("Could not delete the customer. Please try again.", "danger")
        return redirect(url_for("customers.customer_detail", customer_id=customer_id))
    flash("Customer deleted.", "success")
    return redirect(url_for("customers.customers_list"))
