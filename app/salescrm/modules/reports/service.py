"""
Report data access.

Fetches rows for the aggregation functions in reports.metrics. Database errors
are logged and turned into an empty result (or None) so report pages can render
a "data unavailable" state instead of failing.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.salescrm.modules.activities.models import Activity
from app.salescrm.modules.customers.models import Customer
from app.salescrm.modules.deals.models import Deal
from app.salescrm.modules.reports import metrics
from app.salescrm.modules.sales_reps.models import Department, SalesRep

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def deal_row(d: Deal) -> dict[str, Any]:
    return {
        "id": d.id,
        "name": d.name,
        "customer_id": d.customer_id,
        "sales_rep_id": d.sales_rep_id,
        "status": d.status,
        "amount": d.amount,
        "gross_profit": d.gross_profit,
        "category": d.category,
        "expected_close_date": d.expected_close_date,
        "created_at": d.created_at,
        "updated_at": d.updated_at,
    }


def activity_row(a: Activity) -> dict[str, Any]:
    return {
        "id": a.id,
        "activity_type": a.activity_type,
        "date": a.date,
        "customer_id": a.customer_id,
        "deal_id": a.deal_id,
        "sales_rep_id": a.sales_rep_id,
    }


def rep_row(r: SalesRep) -> dict[str, Any]:
    return {
        "id": r.id,
        "name": r.name,
        "email": r.email,
        "role": r.role,
        "department_id": r.department_id,
    }


def department_row(d: Department) -> dict[str, Any]:
    return {"id": d.id, "name": d.name}


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------


def fetch_deal_rows(s: Session, *, scope: int | None = None, since: datetime | None = None) -> list[dict[str, Any]]:
    query = s.query(Deal)
    if scope is not None:
        query = query.filter(Deal.sales_rep_id == scope)
    if since is not None:
        query = query.filter(Deal.updated_at >= since)
    return [deal_row(d) for d in query.order_by(Deal.id.asc()).all()]


def fetch_activity_rows(s: Session, *, scope: int | None = None, since: date | None = None) -> list[dict[str, Any]]:
    query = s.query(Activity)
    if scope is not None:
        query = query.filter(Activity.sales_rep_id == scope)
    if since is not None:
        query = query.filter(Activity.date >= since)
    return [activity_row(a) for a in query.order_by(Activity.id.asc()).all()]


def fetch_rep_rows(s: Session, *, department_id: int | None = None) -> list[dict[str, Any]]:
    query = s.query(SalesRep)
    if department_id is not None:
        query = query.filter(SalesRep.department_id == department_id)
    return [rep_row(r) for r in query.order_by(SalesRep.name.asc(), SalesRep.id.asc()).all()]


def fetch_department_rows(s: Session) -> list[dict[str, Any]]:
    return [department_row(d) for d in s.query(Department).order_by(Department.name.asc()).all()]


# ---------------------------------------------------------------------------
# Report builders (errors → empty / None)
# ---------------------------------------------------------------------------


def sales_rep_performances(s: Session, *, department_id: int | None = None) -> list[metrics.SalesRepPerformance]:
    try:
        reps = fetch_rep_rows(s, department_id=department_id)
        deals = fetch_deal_rows(s)
        activities = fetch_activity_rows(s)
    except SQLAlchemyError:
        logger.exception("Failed to load sales rep performance")
        s.rollback()
        return []
    return metrics.all_sales_rep_performance(reps, deals, activities)


def sales_rep_performance_for(s: Session, sales_rep_id: int) -> metrics.SalesRepPerformance | None:
    try:
        rep = s.query(SalesRep).filter(SalesRep.id == sales_rep_id).one_or_none()
        if rep is None:
            return None
        deals = fetch_deal_rows(s, scope=sales_rep_id)
        activities = fetch_activity_rows(s, scope=sales_rep_id)
    except SQLAlchemyError:
        logger.exception("Failed to load performance for sales rep %s", sales_rep_id)
        s.rollback()
        return None
    return metrics.sales_rep_performance(rep_row(rep), deals, activities)


def department_performances(s: Session) -> list[metrics.DepartmentPerformance]:
    try:
        departments = fetch_department_rows(s)
        reps = fetch_rep_rows(s)
        deals = fetch_deal_rows(s)
    except SQLAlchemyError:
        logger.exception("Failed to load department performance")
        s.rollback()
        return []
    return metrics.all_department_performance(departments, reps, deals)


def deal_amount_stats(s: Session, *, scope: int | None = None, today: date | None = None) -> dict[str, Any] | None:
    try:
        deals = fetch_deal_rows(s, scope=scope)
    except SQLAlchemyError:
        logger.exception("Failed to load deal amount stats")
        s.rollback()
        return None
    return metrics.deal_amount_stats(deals, today=today)


def dashboard_stats(s: Session, *, scope: int | None = None) -> dict[str, Any] | None:
    try:
        deals = fetch_deal_rows(s, scope=scope)
        customers = s.query(Customer)
        if scope is not None:
            customers = customers.filter(Customer.sales_rep_id == scope)
        customer_count = customers.count()
    except SQLAlchemyError:
        logger.exception("Failed to load dashboard stats")
        s.rollback()
        return None
    return metrics.dashboard_stats(deals, customer_count)


def performance_report(s: Session, *, period: str = "month", now: datetime | None = None) -> dict[str, Any] | None:
    """Admin period report; deals by updated_at and activities by date within the window."""
    now = now or datetime.utcnow()
    start = metrics.period_start(period, now)
    try:
        reps = s.query(SalesRep).order_by(SalesRep.name.asc(), SalesRep.id.asc()).all()
        deals = fetch_deal_rows(s, since=start)
        activities = fetch_activity_rows(s, since=start.date())
    except SQLAlchemyError:
        logger.exception("Failed to load sales performance report (%s)", period)
        s.rollback()
        return None
    return metrics.sales_performance_report(reps, deals, activities, period=period, now=now)
