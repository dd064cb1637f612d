"""
Pure aggregation over already-fetched rows.

Rows are mappings (see reports.service.deal_row / activity_row) or any object
exposing the same attribute names. Nothing here touches the database, and
nothing here raises on malformed numbers: amount/profit values that cannot be
read as numbers count as 0.

Status groups:
- won
- lost
- in progress = negotiation | proposal | quotation | final_negotiation
"""

from __future__ import annotations

import calendar
import math
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from app.salescrm.constants import (
    ACTIVITY_TYPES,
    CATEGORY_ALL,
    CATEGORY_CONSTRUCTION,
    CATEGORY_MACHINERY,
    CLOSED_STATUSES,
    DEAL_STATUSES,
    IN_PROGRESS,
    IN_PROGRESS_STATUSES,
    METRIC_IN_PROGRESS_AMOUNT,
    METRIC_IN_PROGRESS_PROFIT,
    METRIC_WON_AMOUNT,
    METRIC_WON_PROFIT,
    STATUS_LOST,
    STATUS_WON,
)

Number = int | float


def to_number(value: Any) -> Number:
    """Lenient numeric coercion: invalid, missing or non-finite input → 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else 0
    if isinstance(value, Decimal):
        if not value.is_finite():
            return 0
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return 0
        return to_number(parsed)
    return 0


def _get(row: Any, key: str, default: Any = None) -> Any:
    if isinstance(row, Mapping):
        return row.get(key, default)
    return getattr(row, key, default)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _as_datetime(value: Any) -> datetime | None:
    """Naive datetime, or None; aware values come back as naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip().replace("Z", "+00:00")
        try:
            return _naive_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


# ---------------------------------------------------------------------------
# Deal totals
# ---------------------------------------------------------------------------


@dataclass
class DealTotals:
    total_deals: int = 0
    won_deals: int = 0
    lost_deals: int = 0
    in_progress_deals: int = 0
    won_amount: Number = 0
    won_profit: Number = 0
    in_progress_amount: Number = 0
    in_progress_profit: Number = 0

    def add(self, deal: Any) -> None:
        status = _get(deal, "status")
        self.total_deals += 1
        if status == STATUS_WON:
            self.won_deals += 1
            self.won_amount += to_number(_get(deal, "amount"))
            self.won_profit += to_number(_get(deal, "gross_profit"))
        elif status == STATUS_LOST:
            self.lost_deals += 1
        elif status in IN_PROGRESS_STATUSES:
            self.in_progress_deals += 1
            self.in_progress_amount += to_number(_get(deal, "amount"))
            self.in_progress_profit += to_number(_get(deal, "gross_profit"))

    def merge(self, other: "DealTotals") -> "DealTotals":
        return DealTotals(
            **{k: getattr(self, k) + getattr(other, k) for k in asdict(self)}
        )


def deal_totals(deals: Iterable[Any]) -> DealTotals:
    t = DealTotals()
    for d in deals:
        t.add(d)
    return t


def deal_status_counts(deals: Iterable[Any]) -> dict[str, int]:
    """Count per status; every known status is present, plus the derived in_progress group."""
    counts: dict[str, int] = {status: 0 for status in DEAL_STATUSES}
    for d in deals:
        status = _get(d, "status") or ""
        if status == IN_PROGRESS:
            # derived key; a raw "in_progress" status is not one of the open statuses
            continue
        counts[status] = counts.get(status, 0) + 1
    counts[IN_PROGRESS] = sum(counts[s] for s in IN_PROGRESS_STATUSES)
    return counts


def deal_amounts_by_status(deals: Iterable[Any]) -> dict[str, Number]:
    sums: dict[str, Number] = {status: 0 for status in DEAL_STATUSES}
    for d in deals:
        status = _get(d, "status") or ""
        sums[status] = sums.get(status, 0) + to_number(_get(d, "amount"))
    return sums


def category_totals(deals: Iterable[Any]) -> dict[str, DealTotals]:
    """Partition by exact category string (missing → "")."""
    out: dict[str, DealTotals] = {}
    for d in deals:
        key = _get(d, "category") or ""
        out.setdefault(key, DealTotals()).add(d)
    return out


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


def activity_type_counts(activities: Iterable[Any]) -> dict[str, int]:
    counts: dict[str, int] = {t: 0 for t in ACTIVITY_TYPES}
    total = 0
    for a in activities:
        key = _get(a, "activity_type") or "other"
        if key == "total":
            key = "other"
        counts[key] = counts.get(key, 0) + 1
        total += 1
    counts["total"] = total
    return counts


# ---------------------------------------------------------------------------
# Monthly rollup
# ---------------------------------------------------------------------------


def shift_months(d: date, months: int) -> date:
    """Move d by whole months, clamping the day to the target month's length."""
    idx = d.year * 12 + (d.month - 1) + months
    year, month = divmod(idx, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return d.replace(year=year, month=month, day=day)


def month_key(value: date | datetime) -> str:
    return f"{value.year}/{value.month:02d}"


def trailing_months(today: date, months: int = 6) -> list[str]:
    first = today.replace(day=1)
    return [month_key(shift_months(first, -i)) for i in range(months - 1, -1, -1)]


def monthly_won_rollup(deals: Iterable[Any], today: date | None = None, months: int = 6) -> list[dict[str, Any]]:
    """
    Won deals bucketed by updated_at month into exactly `months` trailing buckets
    (oldest first, current month last). Deals outside the window are ignored.
    """
    today = today or date.today()
    buckets: dict[str, dict[str, Any]] = {
        key: {"month": key, "amount": 0, "profit": 0, "count": 0} for key in trailing_months(today, months)
    }
    for d in deals:
        if _get(d, "status") != STATUS_WON:
            continue
        updated = _as_datetime(_get(d, "updated_at"))
        if updated is None:
            continue
        bucket = buckets.get(month_key(updated))
        if bucket is None:
            continue
        bucket["amount"] += to_number(_get(d, "amount"))
        bucket["profit"] += to_number(_get(d, "gross_profit"))
        bucket["count"] += 1
    return list(buckets.values())


def deal_amount_stats(deals: Sequence[Any], today: date | None = None) -> dict[str, Any]:
    """Pipeline (anything not won/lost) vs won totals plus the won monthly rollup."""
    open_deals = [d for d in deals if _get(d, "status") not in CLOSED_STATUSES]
    won_deals = [d for d in deals if _get(d, "status") == STATUS_WON]

    def _summary(rows: list[Any]) -> dict[str, Number]:
        return {
            "total": sum((to_number(_get(r, "amount")) for r in rows), 0),
            "profit_total": sum((to_number(_get(r, "gross_profit")) for r in rows), 0),
            "count": len(rows),
        }

    return {
        "in_progress": _summary(open_deals),
        "won": _summary(won_deals),
        "monthly": monthly_won_rollup(won_deals, today=today),
    }


# ---------------------------------------------------------------------------
# Sales rep / department performance
# ---------------------------------------------------------------------------


@dataclass
class SalesRepPerformance:
    sales_rep_id: int
    name: str
    email: str
    role: str
    department_id: int | None
    totals: DealTotals = field(default_factory=DealTotals)
    by_category: dict[str, DealTotals] = field(default_factory=dict)
    activities: int = 0

    def category(self, category: str) -> DealTotals:
        return self.by_category.get(category) or DealTotals()

    @property
    def machinery(self) -> DealTotals:
        return self.category(CATEGORY_MACHINERY)

    @property
    def construction(self) -> DealTotals:
        return self.category(CATEGORY_CONSTRUCTION)


@dataclass
class DepartmentPerformance:
    department_id: int
    name: str
    member_count: int = 0
    totals: DealTotals = field(default_factory=DealTotals)
    by_category: dict[str, DealTotals] = field(default_factory=dict)

    def category(self, category: str) -> DealTotals:
        return self.by_category.get(category) or DealTotals()


def sales_rep_performance(rep: Any, deals: Iterable[Any], activities: Iterable[Any]) -> SalesRepPerformance:
    rep_id = _get(rep, "id")
    rep_deals = [d for d in deals if _get(d, "sales_rep_id") == rep_id]
    return SalesRepPerformance(
        sales_rep_id=rep_id,
        name=_get(rep, "name") or "",
        email=_get(rep, "email") or "",
        role=_get(rep, "role") or "",
        department_id=_get(rep, "department_id"),
        totals=deal_totals(rep_deals),
        by_category=category_totals(rep_deals),
        activities=sum(1 for a in activities if _get(a, "sales_rep_id") == rep_id),
    )


def all_sales_rep_performance(
    reps: Iterable[Any], deals: Sequence[Any], activities: Sequence[Any]
) -> list[SalesRepPerformance]:
    return [sales_rep_performance(rep, deals, activities) for rep in reps]


def department_performance(department: Any, reps: Iterable[Any], deals: Iterable[Any]) -> DepartmentPerformance:
    dept_id = _get(department, "id")
    member_ids = {_get(r, "id") for r in reps if _get(r, "department_id") == dept_id}
    dept_deals = [d for d in deals if _get(d, "sales_rep_id") in member_ids]
    return DepartmentPerformance(
        department_id=dept_id,
        name=_get(department, "name") or "",
        member_count=len(member_ids),
        totals=deal_totals(dept_deals),
        by_category=category_totals(dept_deals),
    )


def all_department_performance(
    departments: Iterable[Any], reps: Sequence[Any], deals: Sequence[Any]
) -> list[DepartmentPerformance]:
    return [department_performance(dept, reps, deals) for dept in departments]


_METRIC_FIELDS = {
    METRIC_WON_AMOUNT: "won_amount",
    METRIC_IN_PROGRESS_AMOUNT: "in_progress_amount",
    METRIC_WON_PROFIT: "won_profit",
    METRIC_IN_PROGRESS_PROFIT: "in_progress_profit",
}


def metric_value(perf: SalesRepPerformance | DepartmentPerformance, metric: str, category: str = CATEGORY_ALL) -> Number:
    attr = _METRIC_FIELDS.get(metric)
    if attr is None:
        return 0
    totals = perf.totals if category in ("", CATEGORY_ALL) else perf.category(category)
    return to_number(getattr(totals, attr))


def rank_by(items: Iterable[Any], key: Callable[[Any], Number], limit: int | None = None) -> list[Any]:
    """Descending by key; ties keep their incoming order."""
    ranked = sorted(items, key=key, reverse=True)
    return ranked[:limit] if limit is not None else ranked


def leaderboard(
    perfs: Iterable[SalesRepPerformance],
    metric: str,
    category: str = CATEGORY_ALL,
    limit: int | None = 10,
) -> list[dict[str, Any]]:
    ranked = rank_by(perfs, key=lambda p: metric_value(p, metric, category), limit=limit)
    return [
        {"name": p.name, "sales_rep_id": p.sales_rep_id, "value": metric_value(p, metric, category), "rank": i + 1}
        for i, p in enumerate(ranked)
    ]


# ---------------------------------------------------------------------------
# Period report
# ---------------------------------------------------------------------------


def period_start(period: str, now: datetime) -> datetime:
    if period == "week":
        return now - timedelta(days=7)
    if period == "quarter":
        return datetime.combine(shift_months(now.date(), -3), now.time())
    if period == "year":
        return datetime.combine(shift_months(now.date(), -12), now.time())
    return datetime.combine(shift_months(now.date(), -1), now.time())


def rep_period_performance(reps: Sequence[Any], deals: Sequence[Any], activities: Sequence[Any]) -> list[dict[str, Any]]:
    """Admin report rows; callers pass deals/activities already narrowed to the period."""
    rows: list[dict[str, Any]] = []
    for rep in reps:
        rep_id = _get(rep, "id")
        rep_deals = [d for d in deals if _get(d, "sales_rep_id") == rep_id]
        won = [d for d in rep_deals if _get(d, "status") == STATUS_WON]
        rows.append(
            {
                "sales_rep": rep,
                "deals_total": len(rep_deals),
                "deals_won": len(won),
                "deals_active": sum(1 for d in rep_deals if _get(d, "status") not in CLOSED_STATUSES),
                "total_amount": sum((to_number(_get(d, "amount")) for d in won), 0),
                "activities": activity_type_counts(a for a in activities if _get(a, "sales_rep_id") == rep_id),
            }
        )
    return rows


def sales_performance_report(
    reps: Sequence[Any],
    deals: Sequence[Any],
    activities: Sequence[Any],
    *,
    period: str = "month",
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Per-rep won/active deal counts and activity mix for deals updated and
    activities dated within the period.
    """
    now = now or datetime.utcnow()
    start = period_start(period, now)

    period_deals = [d for d in deals if (_as_datetime(_get(d, "updated_at")) or datetime.min) >= start]
    period_activities = [a for a in activities if (_as_datetime(_get(a, "date")) or datetime.min).date() >= start.date()]

    rows = rep_period_performance(reps, period_deals, period_activities)

    totals = {
        "deals_won": sum(r["deals_won"] for r in rows),
        "total_amount": sum((r["total_amount"] for r in rows), 0),
        "deals_active": sum(r["deals_active"] for r in rows),
        "activities": {
            k: sum(r["activities"].get(k, 0) for r in rows) for k in (*ACTIVITY_TYPES, "total")
        },
    }
    return {
        "period": period,
        "start_date": start,
        "end_date": now,
        "rows": rows,
        "totals": totals,
    }


def dashboard_stats(deals: Sequence[Any], customer_count: int) -> dict[str, Any]:
    active_customers = {_get(d, "customer_id") for d in deals if _get(d, "status") not in CLOSED_STATUSES}
    return {
        "status_counts": deal_status_counts(deals),
        "amounts_by_status": deal_amounts_by_status(deals),
        "customer_count": customer_count,
        "active_customer_count": len(active_customers),
    }
