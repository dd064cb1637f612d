from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.salescrm.audit import record_event
from app.salescrm.constants import ACTIVITY_TYPES
from app.salescrm.models import User
from app.salescrm.modules.activities.models import Activity
from app.salescrm.modules.customers.models import Customer
from app.salescrm.utils import normalize_text, parse_date, parse_int

logger = logging.getLogger(__name__)

ACTIVITY_FIELDS = ("description", "activity_type", "date", "customer_id", "deal_id", "sales_rep_id")


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


def _scoped(query, scope: int | None):
    if scope is not None:
        query = query.filter(Activity.sales_rep_id == scope)
    return query


def list_activities(
    s: Session,
    *,
    scope: int | None,
    q: str = "",
    activity_type: str = "",
    limit: int | None = None,
) -> list[Activity]:
    """Most recent first; q matches the description or the customer name."""
    query = _scoped(s.query(Activity), scope)
    q = normalize_text(q)
    if q:
        like = f"%{q}%"
        query = query.join(Customer, Customer.id == Activity.customer_id).filter(
            or_(Activity.description.ilike(like), Customer.name.ilike(like))
        )
    if activity_type:
        query = query.filter(Activity.activity_type == activity_type)
    query = query.order_by(Activity.date.desc(), Activity.id.desc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def get_activity(s: Session, activity_id: int, *, scope: int | None = None) -> Activity | None:
    a = s.query(Activity).filter(Activity.id == activity_id).one_or_none()
    if a is None or (scope is not None and a.sales_rep_id != scope):
        return None
    return a


def validate_activity_payload(payload: dict[str, Any]) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if not normalize_text(payload.get("description")):
        errs.append(ValidationError("description", "Description is required."))
    if normalize_text(payload.get("activity_type")) not in ACTIVITY_TYPES:
        errs.append(ValidationError("activity_type", f"Type must be one of: {', '.join(ACTIVITY_TYPES)}."))
    if parse_date(payload.get("date")) is None:
        errs.append(ValidationError("date", "Date is required (YYYY-MM-DD)."))
    if parse_int(payload.get("customer_id")) is None:
        errs.append(ValidationError("customer_id", "Customer is required."))
    deal_id = normalize_text(payload.get("deal_id"))
    if deal_id and parse_int(deal_id) is None:
        errs.append(ValidationError("deal_id", "Deal id must be a number."))
    return errs


def _snapshot(a: Activity) -> dict[str, Any]:
    return {f: getattr(a, f) for f in ACTIVITY_FIELDS}


def _apply(a: Activity, payload: dict[str, Any]) -> None:
    a.description = normalize_text(payload.get("description"))
    a.activity_type = normalize_text(payload.get("activity_type"))
    a.date = parse_date(payload.get("date")) or date.today()
    a.customer_id = parse_int(payload.get("customer_id"))  # type: ignore[assignment]
    a.deal_id = parse_int(payload.get("deal_id"))


def create_activity(s: Session, payload: dict[str, Any], *, user: User, sales_rep_id: int) -> Activity:
    now = datetime.utcnow()
    a = Activity(sales_rep_id=sales_rep_id, created_at=now, updated_at=now)
    _apply(a, payload)
    s.add(a)
    s.flush()
    record_event(
        s,
        actor=user,
        action="activity.create",
        entity_type="Activity",
        entity_id=str(a.id),
        metadata={"activity_type": a.activity_type, "customer_id": a.customer_id, "deal_id": a.deal_id},
    )
    return a


def update_activity(s: Session, a: Activity, payload: dict[str, Any], *, user: User, reason: str | None = None) -> Activity:
    before = _snapshot(a)
    _apply(a, payload)
    a.updated_at = datetime.utcnow()
    after = _snapshot(a)
    record_event(
        s,
        actor=user,
        action="activity.update",
        entity_type="Activity",
        entity_id=str(a.id),
        reason=reason,
        metadata={"before": before, "after": after, "fields_changed": [k for k in before if before[k] != after[k]]},
    )
    return a


def delete_activity(s: Session, a: Activity, *, user: User) -> None:
    record_event(
        s,
        actor=user,
        action="activity.delete",
        entity_type="Activity",
        entity_id=str(a.id),
        metadata={"activity_type": a.activity_type, "customer_id": a.customer_id},
    )
    s.delete(a)
