from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.salescrm.audit import record_event
from app.salescrm.constants import DEAL_STATUSES, IN_PROGRESS, IN_PROGRESS_STATUSES
from app.salescrm.models import User
from app.salescrm.modules.customers.models import Customer
from app.salescrm.modules.deals.models import Deal
from app.salescrm.modules.sales_reps.models import SalesRep
from app.salescrm.utils import normalize_text, parse_amount, parse_date, parse_int

logger = logging.getLogger(__name__)

DEAL_FIELDS = (
    "name",
    "customer_id",
    "status",
    "amount",
    "gross_profit",
    "category",
    "description",
    "expected_close_date",
    "sales_rep_id",
)


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


def _scoped(query, scope: int | None):
    if scope is not None:
        query = query.filter(Deal.sales_rep_id == scope)
    return query


def list_deals(
    s: Session,
    *,
    scope: int | None,
    q: str = "",
    status: str = "",
    category: str = "",
    sales_rep_id: int | None = None,
    department_id: int | None = None,
) -> list[Deal]:
    """
    Deals visible to the scope, newest first.
    q matches the deal name or the customer name; status "in_progress" selects the open statuses.
    """
    query = _scoped(s.query(Deal), scope)
    q = normalize_text(q)
    if q:
        like = f"%{q}%"
        query = query.join(Customer, Customer.id == Deal.customer_id).filter(
            or_(Deal.name.ilike(like), Customer.name.ilike(like))
        )
    if status == IN_PROGRESS:
        query = query.filter(Deal.status.in_(sorted(IN_PROGRESS_STATUSES)))
    elif status:
        query = query.filter(Deal.status == status)
    if category:
        query = query.filter(Deal.category == category)
    if sales_rep_id is not None:
        query = query.filter(Deal.sales_rep_id == sales_rep_id)
    if department_id is not None:
        query = query.join(SalesRep, SalesRep.id == Deal.sales_rep_id).filter(SalesRep.department_id == department_id)
    return query.order_by(Deal.updated_at.desc(), Deal.id.desc()).all()


def deal_options(s: Session, *, scope: int | None, customer_id: int | None = None) -> list[Deal]:
    query = _scoped(s.query(Deal), scope)
    if customer_id is not None:
        query = query.filter(Deal.customer_id == customer_id)
    return query.order_by(Deal.name.asc()).all()


def category_options(s: Session) -> list[str]:
    rows = s.query(Deal.category).filter(Deal.category.isnot(None), Deal.category != "").distinct().all()
    return sorted(r[0] for r in rows)


def get_deal(s: Session, deal_id: int, *, scope: int | None = None) -> Deal | None:
    d = s.query(Deal).filter(Deal.id == deal_id).one_or_none()
    if d is None or (scope is not None and d.sales_rep_id != scope):
        return None
    return d


def validate_deal_payload(payload: dict[str, Any]) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if not normalize_text(payload.get("name")):
        errs.append(ValidationError("name", "Deal name is required."))
    if parse_int(payload.get("customer_id")) is None:
        errs.append(ValidationError("customer_id", "Customer is required."))
    status = normalize_text(payload.get("status"))
    if status not in DEAL_STATUSES:
        errs.append(ValidationError("status", f"Status must be one of: {', '.join(DEAL_STATUSES)}."))
    close = normalize_text(payload.get("expected_close_date"))
    if close and parse_date(close) is None:
        errs.append(ValidationError("expected_close_date", "Expected close date must be YYYY-MM-DD."))
    rep_id = normalize_text(payload.get("sales_rep_id"))
    if rep_id and parse_int(rep_id) is None:
        errs.append(ValidationError("sales_rep_id", "Sales rep id must be a number."))
    return errs


def _snapshot(d: Deal) -> dict[str, Any]:
    return {f: getattr(d, f) for f in DEAL_FIELDS}


def _apply(d: Deal, payload: dict[str, Any]) -> None:
    d.name = normalize_text(payload.get("name"))
    d.customer_id = parse_int(payload.get("customer_id"))  # type: ignore[assignment]
    d.status = normalize_text(payload.get("status"))
    d.amount = parse_amount(payload.get("amount"))
    d.gross_profit = parse_amount(payload.get("gross_profit"))
    d.category = normalize_text(payload.get("category")) or None
    d.description = normalize_text(payload.get("description")) or None
    d.expected_close_date = parse_date(payload.get("expected_close_date"))


def create_deal(s: Session, payload: dict[str, Any], *, user: User, sales_rep_id: int) -> Deal:
    now = datetime.utcnow()
    d = Deal(sales_rep_id=sales_rep_id, created_at=now, updated_at=now)
    _apply(d, payload)
    s.add(d)
    s.flush()
    record_event(
        s,
        actor=user,
        action="deal.create",
        entity_type="Deal",
        entity_id=str(d.id),
        metadata={"name": d.name, "status": d.status, "amount": d.amount, "sales_rep_id": d.sales_rep_id},
    )
    return d


def update_deal(
    s: Session,
    d: Deal,
    payload: dict[str, Any],
    *,
    user: User,
    sales_rep_id: int | None = None,
    reason: str | None = None,
) -> Deal:
    """Any status may follow any other; the change is recorded in the audit trail."""
    before = _snapshot(d)
    _apply(d, payload)
    if sales_rep_id is not None:
        d.sales_rep_id = sales_rep_id
    d.updated_at = datetime.utcnow()
    after = _snapshot(d)
    fields_changed = [k for k in before if before[k] != after[k]]
    record_event(
        s,
        actor=user,
        action="deal.status_change" if "status" in fields_changed else "deal.update",
        entity_type="Deal",
        entity_id=str(d.id),
        reason=reason,
        metadata={"before": before, "after": after, "fields_changed": fields_changed},
    )
    return d


def delete_deal(s: Session, d: Deal, *, user: User) -> None:
    """Activities logged against the deal stay, detached from it."""
    from app.salescrm.modules.activities.models import Activity

    detached = (
        s.query(Activity)
        .filter(Activity.deal_id == d.id)
        .update({Activity.deal_id: None}, synchronize_session=False)
    )
    record_event(
        s,
        actor=user,
        action="deal.delete",
        entity_type="Deal",
        entity_id=str(d.id),
        metadata={"name": d.name, "status": d.status, "activities_detached": detached},
    )
    logger.info("Deleted deal %s (%s activities detached)", d.id, detached)
    s.delete(d)
