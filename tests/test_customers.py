from app.salescrm.db import session_scope
from app.salescrm.models import AuditEvent
from app.salescrm.modules.activities.models import Activity
from app.salescrm.modules.customers.models import Customer
from app.salescrm.modules.customers.service import validate_customer_payload
from app.salescrm.modules.deals.models import Deal

from conftest import login, post


def test_validate_customer_payload():
    assert validate_customer_payload({"name": "Acme"}) == []
    errs = validate_customer_payload({"name": "  ", "email": "bad", "sales_rep_id": "x"})
    assert {e.field for e in errs} == {"name", "email", "sales_rep_id"}


def test_rep_sees_only_own_customers(client):
    login(client, "rep1@example.com")
    r = client.get("/customers")
    assert r.status_code == 200
    assert b"Acme Tools" in r.data
    assert b"Beta Build" not in r.data

    # The all flag is ignored for sales reps
    r = client.get("/customers?all=1")
    assert b"Beta Build" not in r.data


def test_manager_can_view_all_customers(client):
    login(client, "manager@example.com")
    r = client.get("/customers")
    assert b"Acme Tools" not in r.data  # manager owns none
    r = client.get("/customers?all=1")
    assert b"Acme Tools" in r.data
    assert b"Beta Build" in r.data


def test_customer_search(client):
    login(client, "manager@example.com")
    r = client.get("/customers?all=1&q=constr")
    assert b"Beta Build" in r.data
    assert b"Acme Tools" not in r.data


def test_rep_cannot_open_other_reps_customer(client, seeded):
    login(client, "rep1@example.com")
    assert client.get(f"/customers/{seeded['customer_a']}").status_code == 200
    assert client.get(f"/customers/{seeded['customer_b']}").status_code == 404
    assert post(client, f"/customers/{seeded['customer_b']}/delete").status_code == 404


def test_create_customer_is_owned_by_creating_rep(app, client, seeded):
    login(client, "rep1@example.com")
    r = post(
        client,
        "/customers/new",
        {"name": "Gamma Works", "email": "info@gamma.example", "sales_rep_id": str(seeded["rep2"])},
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        c = s.query(Customer).filter(Customer.name == "Gamma Works").one()
        # A sales rep cannot hand the record to someone else
        assert c.sales_rep_id == seeded["rep1"]
        assert s.query(AuditEvent).filter(AuditEvent.action == "customer.create").count() == 1


def test_manager_can_assign_customer_owner(app, client, seeded):
    login(client, "manager@example.com")
    r = post(client, "/customers/new", {"name": "Delta Co", "sales_rep_id": str(seeded["rep2"])})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.query(Customer).filter(Customer.name == "Delta Co").one().sales_rep_id == seeded["rep2"]


def test_create_customer_validation_error(client):
    login(client, "rep1@example.com")
    r = post(client, "/customers/new", {"name": "", "email": "nope"})
    assert r.status_code == 400
    assert b"Customer name is required." in r.data


def test_edit_customer_records_changes(app, client, seeded):
    login(client, "rep1@example.com")
    cid = seeded["customer_a"]
    assert client.get(f"/customers/{cid}/edit").status_code == 200
    r = post(client, f"/customers/{cid}/edit", {"name": "Acme Tools KK", "phone": "03-0000-0000"})
    assert r.status_code == 302
    with session_scope(app) as s:
        c = s.get(Customer, cid)
        assert c.name == "Acme Tools KK"
        assert c.phone == "03-0000-0000"
        ev = s.query(AuditEvent).filter(AuditEvent.action == "customer.update").one()
        assert "name" in ev.metadata_json


def test_customer_detail_shows_deals_and_totals(client, seeded):
    login(client, "rep1@example.com")
    r = client.get(f"/customers/{seeded['customer_a']}")
    assert b"Lathe order" in r.data
    assert b"Press upgrade" in r.data
    assert "¥1,000,000".encode() in r.data


def test_delete_customer_removes_deals_and_activities(app, client, seeded):
    login(client, "rep1@example.com")
    r = post(client, f"/customers/{seeded['customer_a']}/delete")
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Customer, seeded["customer_a"]) is None
        assert s.query(Deal).filter(Deal.customer_id == seeded["customer_a"]).count() == 0
        assert s.query(Activity).filter(Activity.customer_id == seeded["customer_a"]).count() == 0
        # Other reps' data is untouched
        assert s.query(Deal).filter(Deal.id == seeded["deal_lost"]).count() == 1


def test_customer_list_paginates(app, client, seeded):
    with session_scope(app) as s:
        for i in range(15):
            s.add(Customer(name=f"Zeta {i:02d}", sales_rep_id=seeded["rep1"]))
    login(client, "rep1@example.com")
    r = client.get("/customers")
    assert b"16 records" in r.data
    assert b"1 / 2" in r.data
    r = client.get("/customers?page=2")
    assert b"Zeta 14" in r.data
