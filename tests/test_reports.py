import csv
import io
from datetime import date

from sqlalchemy.exc import SQLAlchemyError

from app.salescrm.db import session_scope
from app.salescrm.models import AuditEvent
from app.salescrm.modules.reports import service as report_service

from conftest import login


def test_reports_require_manager(client):
    login(client, "rep1@example.com")
    assert client.get("/performance").status_code == 403
    assert client.get("/performance/export").status_code == 403
    assert client.get("/sales-chart").status_code == 403


def test_performance_page_ranks_reps(client):
    login(client, "manager@example.com")
    r = client.get("/performance")
    assert r.status_code == 200
    body = r.get_data(as_text=True)
    assert body.index("Rep One") < body.index("Rep Two")


def test_performance_page_department_filter(client, seeded):
    login(client, "manager@example.com")
    r = client.get(f"/performance?department_id={seeded['dept2']}&metric=in_progress_amount")
    assert r.status_code == 200
    assert b"Rep Two" in r.data
    assert b"Rep One" not in r.data


def test_performance_export_csv(app, client):
    login(client, "manager@example.com")
    r = client.get("/performance/export")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    assert f"sales_performance_{date.today().strftime('%Y%m%d')}.csv" in r.headers["Content-Disposition"]
    assert r.data.startswith("﻿".encode("utf-8"))

    rows = list(csv.reader(io.StringIO(r.data.decode("utf-8-sig"))))
    assert rows[0][:3] == ["Rank", "Sales Rep", "Email"]
    assert rows[1][1] == "Rep One"
    assert rows[1][4] == "第一営業部"
    assert rows[1][6] == "1000000"
    assert rows[1][12] == "1000000"
    assert len(rows) == 5

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "performance.export").one()
        assert '"row_count": 4' in ev.metadata_json


def test_sales_chart_bar_and_pie(client):
    login(client, "admin@example.com")
    r = client.get("/sales-chart")
    assert r.status_code == 200
    assert b"vegaEmbed" in r.data
    assert b"Rep One" in r.data

    r = client.get("/sales-chart", query_string={"chart": "pie", "metric": "won_profit", "category": "工事"})
    assert r.status_code == 200
    assert b'"arc"' in r.data or b"No data" in r.data

    # unknown chart types and metrics fall back to the defaults
    assert client.get("/sales-chart?chart=radar&metric=bogus&category=bogus").status_code == 200


def _failing_fetch(*args, **kwargs):
    raise SQLAlchemyError("connection lost")


def test_report_builders_degrade_on_database_errors(app, seeded, monkeypatch):
    monkeypatch.setattr(report_service, "fetch_deal_rows", _failing_fetch)
    with session_scope(app) as s:
        assert report_service.sales_rep_performances(s) == []
        assert report_service.department_performances(s) == []
        assert report_service.dashboard_stats(s) is None
        assert report_service.deal_amount_stats(s) is None
        assert report_service.performance_report(s) is None
        assert report_service.sales_rep_performance_for(s, seeded["rep1"]) is None


def test_pages_render_unavailable_state_on_database_errors(client, monkeypatch):
    monkeypatch.setattr(report_service, "fetch_deal_rows", _failing_fetch)
    login(client, "manager@example.com")

    r = client.get("/dashboard")
    assert r.status_code == 200
    assert b"Statistics are unavailable right now." in r.data

    r = client.get("/sales-chart")
    assert r.status_code == 200
    assert b"No data" in r.data
    assert b"vegaEmbed" not in r.data
