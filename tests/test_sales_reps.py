from werkzeug.security import check_password_hash

from app.salescrm.db import session_scope
from app.salescrm.models import AuditEvent, User
from app.salescrm.modules.activities.models import Activity
from app.salescrm.modules.customers.models import Customer
from app.salescrm.modules.deals.models import Deal
from app.salescrm.modules.sales_reps.models import DepartmentGroup, SalesRep

from conftest import PASSWORD, login, post


def test_rep_list_shows_only_self_for_reps(client):
    login(client, "rep1@example.com")
    r = client.get("/sales-reps")
    assert r.status_code == 200
    assert b"Rep One" in r.data
    assert b"Rep Two" not in r.data


def test_manager_list_ranks_by_won_amount(client):
    login(client, "manager@example.com")
    r = client.get("/sales-reps")
    body = r.get_data(as_text=True)
    assert body.index("Rep One") < body.index("Rep Two")
    assert "🏆" in body


def test_rep_detail_visibility(client, seeded):
    login(client, "rep1@example.com")
    r = client.get(f"/sales-reps/{seeded['rep1']}")
    assert r.status_code == 200
    assert b"Lathe order" in r.data
    assert client.get(f"/sales-reps/{seeded['rep2']}").status_code == 404


def test_compare_requires_manager(client):
    login(client, "rep1@example.com")
    assert client.get("/sales-reps/compare").status_code == 403


def test_compare_page_renders_charts(client):
    login(client, "manager@example.com")
    r = client.get("/sales-reps/compare?metric=won_profit")
    assert r.status_code == 200
    assert b"vegaEmbed" in r.data
    # unknown metrics fall back to won amount
    assert client.get("/sales-reps/compare?metric=bogus").status_code == 200


def test_department_pages(client):
    login(client, "rep1@example.com")
    r = client.get("/departments")
    assert r.status_code == 200
    assert "第一営業部".encode() in r.data
    for view in ("revenue", "profit", "deals", "inprogress_deals", "inprogress_amount", "unknown"):
        assert client.get(f"/departments/compare?view={view}").status_code == 200


def test_group_management_requires_manager(client, seeded):
    login(client, "rep1@example.com")
    assert client.get("/group-management").status_code == 403
    r = post(client, "/group-management/assign", {"sales_rep_id": str(seeded["rep1"]), "group_id": str(seeded["group1"])})
    assert r.status_code == 403


def test_assign_and_remove_group(app, client, seeded):
    login(client, "manager@example.com")
    assert client.get(f"/group-management?department_id={seeded['dept1']}").status_code == 200

    r = post(client, "/group-management/assign", {"sales_rep_id": str(seeded["rep1"]), "group_id": str(seeded["group1"])})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(SalesRep, seeded["rep1"]).group.id == seeded["group1"]

    r = post(client, "/group-management/assign", {"sales_rep_id": str(seeded["rep1"]), "group_id": ""})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(SalesRep, seeded["rep1"]).group is None
        actions = {a for (a,) in s.query(AuditEvent.action).all()}
        assert {"sales_rep.group_assign", "sales_rep.group_remove"} <= actions


def test_group_from_other_department_is_rejected(app, client, seeded):
    login(client, "manager@example.com")
    r = post(
        client,
        "/group-management/assign",
        {"sales_rep_id": str(seeded["rep1"]), "group_id": str(seeded["group2"])},
        follow_redirects=True,
    )
    assert b"Group must belong to the rep" in r.data
    with session_scope(app) as s:
        assert s.get(SalesRep, seeded["rep1"]).group is None


def test_create_group(app, client, seeded):
    login(client, "manager@example.com")
    r = post(client, "/group-management/groups", {"department_id": str(seeded["dept1"]), "name": "3課"})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.query(DepartmentGroup).filter(DepartmentGroup.name == "3課").one().department_id == seeded["dept1"]

    r = post(client, "/group-management/groups", {"department_id": str(seeded["dept1"]), "name": "  "}, follow_redirects=True)
    assert b"Group name is required" in r.data


def test_profile_update(app, client, seeded):
    login(client, "rep1@example.com")
    assert client.get("/profile").status_code == 200
    r = post(
        client,
        "/profile",
        {"name": "Rep Uno", "department_id": str(seeded["dept2"]), "group_id": str(seeded["group2"])},
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        rep = s.get(SalesRep, seeded["rep1"])
        assert rep.name == "Rep Uno"
        assert rep.department_id == seeded["dept2"]
        assert rep.group.id == seeded["group2"]


def test_profile_drops_group_of_previous_department(app, client, seeded):
    login(client, "rep1@example.com")
    r = post(
        client,
        "/profile",
        {"name": "Rep One", "department_id": str(seeded["dept2"]), "group_id": str(seeded["group1"])},
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(SalesRep, seeded["rep1"]).group is None


def test_profile_requires_name(client, seeded):
    login(client, "rep1@example.com")
    r = post(client, "/profile", {"name": "", "department_id": str(seeded["dept1"])})
    assert r.status_code == 400


def test_password_change(app, client, seeded):
    login(client, "rep1@example.com")
    r = post(client, "/profile/password", {"current_password": "wrong", "new_password": "newpass123", "confirm_password": "newpass123"})
    assert r.status_code == 400
    r = post(client, "/profile/password", {"current_password": PASSWORD, "new_password": "short", "confirm_password": "short"})
    assert r.status_code == 400
    r = post(client, "/profile/password", {"current_password": PASSWORD, "new_password": "newpass123", "confirm_password": "other1234"})
    assert r.status_code == 400

    r = post(client, "/profile/password", {"current_password": PASSWORD, "new_password": "newpass123", "confirm_password": "newpass123"})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert check_password_hash(s.get(User, seeded["rep1_user"]).password_hash, "newpass123")


def test_admin_changes_role(app, client, seeded):
    login(client, "admin@example.com")
    r = post(client, f"/admin/users/{seeded['rep1']}/role", {"role": "manager"})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(SalesRep, seeded["rep1"]).role == "manager"

    post(client, f"/admin/users/{seeded['rep1']}/role", {"role": "owner"})
    with session_scope(app) as s:
        assert s.get(SalesRep, seeded["rep1"]).role == "manager"


def test_admin_cannot_change_own_role(app, client, seeded):
    login(client, "admin@example.com")
    r = post(client, f"/admin/users/{seeded['admin']}/role", {"role": "sales_rep"}, follow_redirects=True)
    assert b"You cannot change your own role" in r.data
    with session_scope(app) as s:
        assert s.get(SalesRep, seeded["admin"]).role == "admin"


def test_admin_deactivates_user(app, client, seeded):
    login(client, "admin@example.com")
    r = post(client, f"/admin/users/{seeded['rep1']}/active", {"is_active": "0"})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(User, seeded["rep1_user"]).is_active is False


def test_delete_rep_cascades(app, client, seeded):
    login(client, "admin@example.com")
    r = post(client, f"/admin/users/{seeded['rep2']}/delete", follow_redirects=True)
    assert b"Deleted Rep Two (1 customers, 1 deals, 1 activities)" in r.data
    with session_scope(app) as s:
        assert s.get(SalesRep, seeded["rep2"]) is None
        assert s.query(User).filter(User.email == "rep2@example.com").count() == 0
        assert s.get(Customer, seeded["customer_b"]) is None
        assert s.get(Deal, seeded["deal_lost"]) is None
        assert s.query(Activity).filter(Activity.description == "Quote email").count() == 0
        # rep1's book is untouched
        assert s.get(Deal, seeded["deal_won"]) is not None


def test_admin_cannot_delete_self(app, client, seeded):
    login(client, "admin@example.com")
    r = post(client, f"/admin/users/{seeded['admin']}/delete", follow_redirects=True)
    assert b"Cannot delete your own account" in r.data
    with session_scope(app) as s:
        assert s.get(SalesRep, seeded["admin"]) is not None


def test_manager_cannot_use_user_admin(client, seeded):
    login(client, "manager@example.com")
    assert post(client, f"/admin/users/{seeded['rep2']}/delete").status_code == 403
