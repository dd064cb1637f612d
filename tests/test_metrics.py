from datetime import date, datetime
from decimal import Decimal

import pytest

from app.salescrm.modules.reports.metrics import (
    DealTotals,
    activity_type_counts,
    all_department_performance,
    all_sales_rep_performance,
    category_totals,
    dashboard_stats,
    deal_amount_stats,
    deal_status_counts,
    deal_totals,
    leaderboard,
    metric_value,
    monthly_won_rollup,
    period_start,
    rank_by,
    sales_performance_report,
    shift_months,
    to_number,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, 0),
        ("", 0),
        ("abc", 0),
        ("1200", 1200),
        (" 12.5 ", 12.5),
        (Decimal("300"), 300),
        (float("nan"), 0),
        (float("inf"), 0),
        (True, 0),
        (7, 7),
    ],
)
def test_to_number(value, expected):
    assert to_number(value) == expected


def test_deal_totals_example():
    deals = [
        {"status": "won", "amount": 1000, "sales_rep_id": "A"},
        {"status": "negotiation", "amount": 500, "sales_rep_id": "B"},
        {"status": "lost", "amount": 200, "sales_rep_id": "A"},
    ]
    t = deal_totals(deals)
    assert t == DealTotals(
        total_deals=3,
        won_deals=1,
        lost_deals=1,
        in_progress_deals=1,
        won_amount=1000,
        won_profit=0,
        in_progress_amount=500,
        in_progress_profit=0,
    )


def test_deal_totals_tolerates_bad_numbers_and_unknown_status():
    t = deal_totals(
        [
            {"status": "won", "amount": "not a number", "gross_profit": None},
            {"status": "archived", "amount": 999},
        ]
    )
    assert t.total_deals == 2
    assert t.won_deals == 1
    assert t.won_amount == 0
    assert t.in_progress_deals == 0


def test_deal_totals_merge():
    a = deal_totals([{"status": "won", "amount": 10, "gross_profit": 2}])
    b = deal_totals([{"status": "proposal", "amount": 5, "gross_profit": 1}])
    merged = a.merge(b)
    assert merged.total_deals == 2
    assert merged.won_amount == 10
    assert merged.in_progress_profit == 1


def test_status_counts_include_in_progress_group():
    counts = deal_status_counts(
        [{"status": "negotiation"}, {"status": "quotation"}, {"status": "won"}, {"status": "final_negotiation"}]
    )
    assert counts["in_progress"] == 3
    assert counts["won"] == 1
    assert counts["lost"] == 0
    assert counts["proposal"] == 0


def test_category_totals():
    by_cat = category_totals(
        [
            {"status": "won", "amount": 100, "category": "機械工具"},
            {"status": "won", "amount": 50, "category": "工事"},
            {"status": "negotiation", "amount": 70, "category": "機械工具"},
            {"status": "won", "amount": 5, "category": None},
        ]
    )
    assert by_cat["機械工具"].won_amount == 100
    assert by_cat["機械工具"].in_progress_amount == 70
    assert by_cat["工事"].won_amount == 50
    assert by_cat[""].won_amount == 5


def test_activity_type_counts():
    counts = activity_type_counts(
        [{"activity_type": "visit"}, {"activity_type": "visit"}, {"activity_type": "phone"}, {"activity_type": None}]
    )
    assert counts["visit"] == 2
    assert counts["phone"] == 1
    assert counts["other"] == 1
    assert counts["email"] == 0
    assert counts["total"] == 4


@pytest.mark.parametrize(
    "start,months,expected",
    [
        (date(2026, 3, 31), -1, date(2026, 2, 28)),
        (date(2024, 3, 31), -1, date(2024, 2, 29)),
        (date(2026, 1, 15), -1, date(2025, 12, 15)),
        (date(2026, 10, 31), -12, date(2025, 10, 31)),
        (date(2026, 8, 31), 1, date(2026, 9, 30)),
    ],
)
def test_shift_months_clamps_day(start, months, expected):
    assert shift_months(start, months) == expected


def test_monthly_won_rollup_has_six_buckets():
    today = date(2026, 3, 15)
    deals = [
        {"status": "won", "amount": 100, "gross_profit": 10, "updated_at": datetime(2026, 3, 1)},
        {"status": "won", "amount": 50, "gross_profit": 5, "updated_at": "2026-01-20T09:00:00"},
        {"status": "won", "amount": 999, "updated_at": datetime(2025, 9, 30)},
        {"status": "lost", "amount": 70, "updated_at": datetime(2026, 3, 2)},
        {"status": "won", "amount": 1, "updated_at": None},
    ]
    monthly = monthly_won_rollup(deals, today=today)
    assert [m["month"] for m in monthly] == ["2025/10", "2025/11", "2025/12", "2026/01", "2026/02", "2026/03"]
    assert monthly[-1] == {"month": "2026/03", "amount": 100, "profit": 10, "count": 1}
    assert monthly[3]["amount"] == 50
    assert sum(m["count"] for m in monthly) == 2


def test_deal_amount_stats():
    stats = deal_amount_stats(
        [
            {"status": "won", "amount": 100, "gross_profit": 30, "updated_at": datetime(2026, 3, 1)},
            {"status": "proposal", "amount": 40, "gross_profit": 4},
            {"status": "lost", "amount": 5},
        ],
        today=date(2026, 3, 10),
    )
    assert stats["in_progress"] == {"total": 40, "profit_total": 4, "count": 1}
    assert stats["won"] == {"total": 100, "profit_total": 30, "count": 1}
    assert len(stats["monthly"]) == 6


def _perf_fixture():
    reps = [
        {"id": 1, "name": "Aoki", "department_id": 10},
        {"id": 2, "name": "Baba", "department_id": 10},
        {"id": 3, "name": "Chiba", "department_id": 20},
    ]
    deals = [
        {"sales_rep_id": 1, "status": "won", "amount": 300, "gross_profit": 30, "category": "機械工具"},
        {"sales_rep_id": 2, "status": "won", "amount": 300, "gross_profit": 60, "category": "工事"},
        {"sales_rep_id": 3, "status": "negotiation", "amount": 900, "gross_profit": 90, "category": "工事"},
    ]
    activities = [{"sales_rep_id": 1}, {"sales_rep_id": 1}, {"sales_rep_id": 3}]
    return reps, deals, activities


def test_sales_rep_and_department_performance():
    reps, deals, activities = _perf_fixture()
    perfs = all_sales_rep_performance(reps, deals, activities)
    assert [p.activities for p in perfs] == [2, 0, 1]
    assert perfs[0].machinery.won_amount == 300
    assert perfs[1].construction.won_profit == 60

    depts = all_department_performance([{"id": 10, "name": "第一"}, {"id": 20, "name": "第二"}], reps, deals)
    assert depts[0].member_count == 2
    assert depts[0].totals.won_amount == 600
    assert depts[1].totals.in_progress_amount == 900


def test_leaderboard_ties_keep_input_order():
    reps, deals, activities = _perf_fixture()
    perfs = all_sales_rep_performance(reps, deals, activities)
    rows = leaderboard(perfs, "won_amount")
    assert [(r["name"], r["rank"]) for r in rows] == [("Aoki", 1), ("Baba", 2), ("Chiba", 3)]

    rows = leaderboard(perfs, "in_progress_amount", limit=1)
    assert rows == [{"name": "Chiba", "sales_rep_id": 3, "value": 900, "rank": 1}]

    rows = leaderboard(perfs, "won_profit", category="工事")
    assert rows[0]["name"] == "Baba"


def test_metric_value_unknown_metric_is_zero():
    reps, deals, activities = _perf_fixture()
    perf = all_sales_rep_performance(reps, deals, activities)[0]
    assert metric_value(perf, "bogus") == 0
    assert metric_value(perf, "won_amount", "工事") == 0


def test_rank_by_limit():
    assert rank_by([1, 5, 3], key=lambda x: x, limit=2) == [5, 3]


def test_period_start():
    now = datetime(2026, 3, 31, 12, 0)
    assert period_start("week", now) == datetime(2026, 3, 24, 12, 0)
    assert period_start("month", now) == datetime(2026, 2, 28, 12, 0)
    assert period_start("quarter", now) == datetime(2025, 12, 31, 12, 0)
    assert period_start("year", now) == datetime(2025, 3, 31, 12, 0)
    assert period_start("decade", now) == period_start("month", now)


def test_sales_performance_report():
    now = datetime(2026, 3, 31, 12, 0)
    reps = [{"id": 1, "name": "Aoki"}, {"id": 2, "name": "Baba"}]
    deals = [
        {"sales_rep_id": 1, "status": "won", "amount": 100, "updated_at": datetime(2026, 3, 20)},
        {"sales_rep_id": 1, "status": "proposal", "amount": 50, "updated_at": datetime(2026, 3, 25)},
        {"sales_rep_id": 2, "status": "won", "amount": 999, "updated_at": datetime(2025, 12, 1)},
    ]
    activities = [
        {"sales_rep_id": 1, "activity_type": "visit", "date": date(2026, 3, 30)},
        {"sales_rep_id": 2, "activity_type": "phone", "date": date(2026, 1, 1)},
    ]
    report = sales_performance_report(reps, deals, activities, period="month", now=now)
    assert report["start_date"] == datetime(2026, 2, 28, 12, 0)
    aoki, baba = report["rows"]
    assert aoki["deals_won"] == 1
    assert aoki["deals_active"] == 1
    assert aoki["total_amount"] == 100
    assert aoki["activities"]["visit"] == 1
    assert baba["deals_total"] == 0
    assert report["totals"]["deals_won"] == 1
    assert report["totals"]["activities"]["total"] == 1


def test_dashboard_stats():
    stats = dashboard_stats(
        [
            {"status": "won", "amount": 10, "customer_id": 1},
            {"status": "negotiation", "amount": 20, "customer_id": 2},
            {"status": "proposal", "amount": 5, "customer_id": 2},
        ],
        customer_count=3,
    )
    assert stats["active_customer_count"] == 1
    assert stats["amounts_by_status"]["negotiation"] == 20
    assert stats["status_counts"]["in_progress"] == 2


def test_category_subtotals_sum_to_overall_totals():
    deals = [
        {"status": "won", "amount": 100, "gross_profit": 10, "category": "機械工具"},
        {"status": "won", "amount": "abc", "gross_profit": None, "category": "工事"},
        {"status": "negotiation", "amount": None, "gross_profit": "5", "category": None},
        {"status": "quotation", "amount": "250", "gross_profit": 25, "category": "機械工具"},
        {"status": "lost", "amount": 70, "category": "工事"},
        {"status": "archived", "amount": 9, "category": "その他"},
    ]
    merged = DealTotals()
    for bucket in category_totals(deals).values():
        merged = merged.merge(bucket)
    assert merged == deal_totals(deals)
    assert merged.in_progress_amount == 250
    assert merged.in_progress_profit == 30


def test_utc_suffixed_timestamps_are_accepted_everywhere():
    deals = [{"sales_rep_id": 1, "status": "won", "amount": 100, "updated_at": "2026-10-10T09:00:00Z"}]
    report = sales_performance_report([{"id": 1}], deals, [], period="month", now=datetime(2026, 10, 18))
    assert report["rows"][0]["deals_won"] == 1
    assert report["rows"][0]["total_amount"] == 100

    # +09:00 on the 1st is still September in UTC
    monthly = monthly_won_rollup(
        [{"status": "won", "amount": 5, "updated_at": "2026-10-01T08:00:00+09:00"}], today=date(2026, 10, 18)
    )
    assert monthly[-2] == {"month": "2026/09", "amount": 5, "profit": 0, "count": 1}
    assert monthly[-1]["count"] == 0


def test_raw_values_do_not_overwrite_derived_keys():
    counts = deal_status_counts([{"status": "in_progress"}, {"status": "proposal"}])
    assert counts["in_progress"] == 1

    types = activity_type_counts([{"activity_type": "total"}, {"activity_type": "visit"}])
    assert types["total"] == 2
    assert types["other"] == 1
