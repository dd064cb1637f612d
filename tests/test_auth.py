from app.salescrm import auth
from app.salescrm.db import session_scope
from app.salescrm.models import AuditEvent, User
from app.salescrm.modules.sales_reps.models import SalesRep

from conftest import PASSWORD, login


def _signup(client, **overrides):
    data = {
        "name": "New Person",
        "email": "new@example.com",
        "password": "longenough",
        "confirm_password": "longenough",
        "department_id": "",
    }
    data.update(overrides)
    return client.post("/auth/signup", data=data)


def test_login_with_bad_password_fails_and_is_audited(app, client):
    r = login(client, "rep1@example.com", "wrong")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count() == 1


def test_login_honours_local_next_only(client):
    r = client.post("/auth/login", data={"email": "rep1@example.com", "password": PASSWORD, "next": "/deals"})
    assert r.headers["Location"].endswith("/deals")

    client.get("/auth/logout")
    r = client.post(
        "/auth/login",
        data={"email": "rep1@example.com", "password": PASSWORD, "next": "//evil.example.com/"},
    )
    assert "evil.example.com" not in r.headers["Location"]


def test_login_rate_limited_after_repeated_failures(client):
    for _ in range(auth._LOGIN_RATE_LIMIT):
        login(client, "rep1@example.com", "wrong")
    r = login(client, "rep1@example.com")
    assert r.status_code == 302
    # still locked out: protected pages redirect to login
    assert client.get("/dashboard").status_code == 302


def test_inactive_user_cannot_login(app, client, seeded):
    with session_scope(app) as s:
        s.get(User, seeded["rep1_user"]).is_active = False
    login(client, "rep1@example.com")
    assert client.get("/dashboard").status_code == 302


def test_signup_creates_user_and_sales_rep(app, client, seeded):
    r = _signup(client, department_id=str(seeded["dept2"]))
    assert r.status_code == 200
    assert b"new@example.com" in r.data
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == "new@example.com").one()
        rep = s.query(SalesRep).filter(SalesRep.user_id == u.id).one()
        assert rep.name == "New Person"
        assert rep.role == "sales_rep"
        assert rep.department_id == seeded["dept2"]
        assert u.email_confirmed_at is not None

    assert login(client, "new@example.com", "longenough").status_code == 302
    assert client.get("/dashboard").status_code == 200


def test_signup_rejects_duplicate_email_and_short_password(client):
    assert _signup(client, email="rep1@example.com").status_code == 400
    assert _signup(client, password="short", confirm_password="short").status_code == 400
    assert _signup(client, confirm_password="different1").status_code == 400
    assert _signup(client, email="not-an-email").status_code == 400


def test_signup_with_confirmation_required(app, client, monkeypatch):
    app.config["REQUIRE_EMAIL_CONFIRMATION"] = True
    sent = []
    monkeypatch.setattr(auth, "send_mail", lambda to, subject, body: sent.append((to, body)) or True)

    r = _signup(client)
    assert r.status_code == 200
    assert len(sent) == 1

    # Unconfirmed accounts cannot sign in yet
    login(client, "new@example.com", "longenough")
    assert client.get("/dashboard").status_code == 302

    with app.test_request_context():
        with session_scope(app) as s:
            u = s.query(User).filter(User.email == "new@example.com").one()
            token = auth.make_confirm_token(u)
    r = client.get(f"/auth/confirm/{token}")
    assert r.status_code == 302

    login(client, "new@example.com", "longenough")
    assert client.get("/dashboard").status_code == 200


def test_confirm_with_bad_token(client):
    r = client.get("/auth/confirm/garbage", follow_redirects=True)
    assert b"invalid" in r.data


def test_forgot_and_reset_password(app, client, monkeypatch):
    sent = []
    monkeypatch.setattr(auth, "send_mail", lambda to, subject, body: sent.append((to, body)) or True)

    r = client.post("/auth/forgot-password", data={"email": "rep1@example.com"})
    assert r.status_code == 302
    assert len(sent) == 1
    link = sent[0][1].split("\n")[3]
    token = link.rsplit("/", 1)[-1]

    # Unknown email gets the same response and no mail
    r = client.post("/auth/forgot-password", data={"email": "nobody@example.com"})
    assert r.status_code == 302
    assert len(sent) == 1

    assert client.get(f"/auth/reset-password/{token}").status_code == 200
    r = client.post(f"/auth/reset-password/{token}", data={"password": "brand-new-pw", "confirm_password": "x"})
    assert r.status_code == 400
    r = client.post(
        f"/auth/reset-password/{token}",
        data={"password": "brand-new-pw", "confirm_password": "brand-new-pw"},
    )
    assert r.status_code == 302

    # Token is single-use: the password hash it was bound to has changed
    r = client.get(f"/auth/reset-password/{token}")
    assert r.status_code == 302
    assert "/auth/forgot-password" in r.headers["Location"]

    login(client, "rep1@example.com", "brand-new-pw")
    assert client.get("/dashboard").status_code == 200
