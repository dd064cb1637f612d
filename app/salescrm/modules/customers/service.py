from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.salescrm.audit import record_event
from app.salescrm.models import User
from app.salescrm.modules.customers.models import Customer
from app.salescrm.utils import is_valid_email, normalize_text, parse_int

logger = logging.getLogger(__name__)

CUSTOMER_FIELDS = ("name", "industry", "phone", "email", "address")


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


def _scoped(query, scope: int | None):
    if scope is not None:
        query = query.filter(Customer.sales_rep_id == scope)
    return query


def list_customers(s: Session, *, scope: int | None, q: str = "") -> list[Customer]:
    """Customers visible to the scope, optionally narrowed by a substring of name/industry/email."""
    query = _scoped(s.query(Customer), scope)
    q = normalize_text(q)
    if q:
        like = f"%{q}%"
        query = query.filter(or_(Customer.name.ilike(like), Customer.industry.ilike(like), Customer.email.ilike(like)))
    return query.order_by(Customer.name.asc(), Customer.id.asc()).all()


def count_customers(s: Session, *, scope: int | None) -> int:
    return _scoped(s.query(func.count(Customer.id)), scope).scalar() or 0


def customer_options(s: Session, *, scope: int | None) -> list[Customer]:
    return _scoped(s.query(Customer), scope).order_by(Customer.name.asc()).all()


def get_customer(s: Session, customer_id: int, *, scope: int | None = None) -> Customer | None:
    c = s.query(Customer).filter(Customer.id == customer_id).one_or_none()
    if c is None or (scope is not None and c.sales_rep_id != scope):
        return None
    return c


def validate_customer_payload(payload: dict[str, Any]) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if not normalize_text(payload.get("name")):
        errs.append(ValidationError("name", "Customer name is required."))
    email = normalize_text(payload.get("email"))
    if email and not is_valid_email(email):
        errs.append(ValidationError("email", "Email address is not valid."))
    rep_id = normalize_text(payload.get("sales_rep_id"))
    if rep_id and parse_int(rep_id) is None:
        errs.append(ValidationError("sales_rep_id", "Sales rep id must be a number."))
    return errs


def _snapshot(c: Customer) -> dict[str, Any]:
    return {f: getattr(c, f) for f in (*CUSTOMER_FIELDS, "sales_rep_id")}


def _apply(c: Customer, payload: dict[str, Any]) -> None:
    c.name = normalize_text(payload.get("name"))
    for f in CUSTOMER_FIELDS[1:]:
        setattr(c, f, normalize_text(payload.get(f)) or None)


def create_customer(s: Session, payload: dict[str, Any], *, user: User, sales_rep_id: int) -> Customer:
    c = Customer(sales_rep_id=sales_rep_id)
    _apply(c, payload)
    s.add(c)
    s.flush()
    record_event(
        s,
        actor=user,
        action="customer.create",
        entity_type="Customer",
        entity_id=str(c.id),
        metadata={"name": c.name, "sales_rep_id": c.sales_rep_id},
    )
    return c


def update_customer(
    s: Session,
    c: Customer,
    payload: dict[str, Any],
    *,
    user: User,
    sales_rep_id: int | None = None,
    reason: str | None = None,
) -> Customer:
    before = _snapshot(c)
    _apply(c, payload)
    if sales_rep_id is not None:
        c.sales_rep_id = sales_rep_id
    c.updated_at = datetime.utcnow()
    after = _snapshot(c)
    fields_changed = [k for k in before if before[k] != after[k]]
    record_event(
        s,
        actor=user,
        action="customer.update",
        entity_type="Customer",
        entity_id=str(c.id),
        reason=reason,
        metadata={"before": before, "after": after, "fields_changed": fields_changed},
    )
    return c


def delete_customer(s: Session, c: Customer, *, user: User) -> None:
    """Deals and activities of the customer go with it (ON DELETE CASCADE)."""
    from app.salescrm.modules.activities.models import Activity
    from app.salescrm.modules.deals.models import Deal

    activity_count = s.query(Activity).filter(Activity.customer_id == c.id).delete(synchronize_session=False)
    deal_count = s.query(Deal).filter(Deal.customer_id == c.id).delete(synchronize_session=False)
    record_event(
        s,
        actor=user,
        action="customer.delete",
        entity_type="Customer",
        entity_id=str(c.id),
        metadata={"name": c.name, "deals_deleted": deal_count, "activities_deleted": activity_count},
    )
    logger.info("Deleted customer %s (%s deals, %s activities)", c.id, deal_count, activity_count)
    s.delete(c)
