from datetime import date, datetime

import pytest
from werkzeug.security import generate_password_hash

from app.salescrm import auth, create_app
from app.salescrm.db import session_scope
from app.salescrm.models import Base, User
from app.salescrm.modules.activities.models import Activity
from app.salescrm.modules.customers.models import Customer
from app.salescrm.modules.deals.models import Deal
from app.salescrm.modules.sales_reps.models import Department, DepartmentGroup, SalesRep

CSRF = "test-csrf-token"
PASSWORD = "password123"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    for k in ("SMTP_HOST", "APP_BASE_URL", "REQUIRE_EMAIL_CONFIRMATION"):
        monkeypatch.delenv(k, raising=False)
    auth._login_attempts.clear()

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


def _user(s, email: str, name: str, role: str, department_id: int | None) -> SalesRep:
    u = User(email=email, password_hash=generate_password_hash(PASSWORD), is_active=True)
    s.add(u)
    s.flush()
    rep = SalesRep(user_id=u.id, name=name, email=email, role=role, department_id=department_id)
    s.add(rep)
    s.flush()
    return rep


@pytest.fixture()
def seeded(app):
    """
    Two departments, four users and a small book of business:
    - rep1 (第一営業部): customer A with a won and an in-progress deal, two activities
    - rep2 (第二営業部): customer B with a lost deal, one activity
    """
    with session_scope(app) as s:
        d1 = Department(name="第一営業部")
        d2 = Department(name="第二営業部")
        s.add_all([d1, d2])
        s.flush()
        g1 = DepartmentGroup(department_id=d1.id, name="1課")
        g2 = DepartmentGroup(department_id=d2.id, name="1課")
        s.add_all([g1, g2])
        s.flush()

        admin = _user(s, "admin@example.com", "Admin", "admin", d1.id)
        manager = _user(s, "manager@example.com", "Manager", "manager", d1.id)
        rep1 = _user(s, "rep1@example.com", "Rep One", "sales_rep", d1.id)
        rep2 = _user(s, "rep2@example.com", "Rep Two", "sales_rep", d2.id)

        cust_a = Customer(name="Acme Tools", industry="Manufacturing", sales_rep_id=rep1.id)
        cust_b = Customer(name="Beta Build", industry="Construction", sales_rep_id=rep2.id)
        s.add_all([cust_a, cust_b])
        s.flush()

        now = datetime.utcnow()
        won = Deal(
            name="Lathe order", customer_id=cust_a.id, sales_rep_id=rep1.id, status="won",
            amount=1_000_000, gross_profit=300_000, category="機械工具", updated_at=now,
        )
        open_deal = Deal(
            name="Press upgrade", customer_id=cust_a.id, sales_rep_id=rep1.id, status="negotiation",
            amount=500_000, gross_profit=100_000, category="工事", updated_at=now,
        )
        lost = Deal(
            name="Crane rental", customer_id=cust_b.id, sales_rep_id=rep2.id, status="lost",
            amount=200_000, gross_profit=20_000, category="機械工具", updated_at=now,
        )
        s.add_all([won, open_deal, lost])
        s.flush()

        s.add_all(
            [
                Activity(description="Site visit", activity_type="visit", date=date.today(),
                         customer_id=cust_a.id, deal_id=won.id, sales_rep_id=rep1.id),
                Activity(description="Follow-up call", activity_type="phone", date=date.today(),
                         customer_id=cust_a.id, deal_id=open_deal.id, sales_rep_id=rep1.id),
                Activity(description="Quote email", activity_type="email", date=date.today(),
                         customer_id=cust_b.id, deal_id=lost.id, sales_rep_id=rep2.id),
            ]
        )
        s.flush()

        return {
            "dept1": d1.id,
            "dept2": d2.id,
            "group1": g1.id,
            "group2": g2.id,
            "admin": admin.id,
            "manager": manager.id,
            "rep1": rep1.id,
            "rep2": rep2.id,
            "admin_user": admin.user_id,
            "rep1_user": rep1.user_id,
            "customer_a": cust_a.id,
            "customer_b": cust_b.id,
            "deal_won": won.id,
            "deal_open": open_deal.id,
            "deal_lost": lost.id,
        }


@pytest.fixture()
def client(app, seeded):
    c = app.test_client()
    with c.session_transaction() as sess:
        sess["csrf_token"] = CSRF
    return c


def login(client, email: str, password: str = PASSWORD):
    return client.post("/auth/login", data={"email": email, "password": password}, follow_redirects=False)


def post(client, url: str, data: dict | None = None, **kwargs):
    """Form POST with the session CSRF token attached."""
    return client.post(url, data={"csrf_token": CSRF, **(data or {})}, **kwargs)
