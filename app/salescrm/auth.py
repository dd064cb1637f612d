from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from app.salescrm.audit import record_event
from app.salescrm.db import db_session
from app.salescrm.mailer import send_mail
from app.salescrm.models import User
from app.salescrm.modules.sales_reps.service import create_sales_rep, get_department, list_departments
from app.salescrm.utils import is_valid_email, normalize_text, parse_int

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds

MIN_PASSWORD_LENGTH = 8
CONFIRM_SALT = "email-confirm"
RESET_SALT = "password-reset"
CONFIRM_MAX_AGE = 7 * 24 * 3600  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _serializer(salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=salt)


def _external_url(endpoint: str, **values) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/")
    if base:
        return base + url_for(endpoint, **values)
    return url_for(endpoint, _external=True, **values)


def _safe_next(nxt: str) -> str | None:
    # Only allow local paths to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def make_confirm_token(user: User) -> str:
    return _serializer(CONFIRM_SALT).dumps({"uid": user.id, "email": user.email})


def make_reset_token(user: User) -> str:
    # Binding the token to the current hash makes it single-use: a reset changes the hash.
    return _serializer(RESET_SALT).dumps({"uid": user.id, "ph": user.password_hash[-16:]})


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


# =============================================================================
# LOGIN / LOGOUT
# =============================================================================


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            flash("Invalid credentials.", "danger")
            return redirect(url_for("auth.login_get", next=nxt or None))

        if current_app.config.get("REQUIRE_EMAIL_CONFIRMATION") and user.email_confirmed_at is None:
            flash("Please confirm your email address before signing in.", "warning")
            return redirect(url_for("auth.login_get"))

        session["user_id"] = user.id
        _login_attempts[ip].clear()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return redirect(_safe_next(nxt) or url_for("routes.dashboard"))
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("routes.index"))


# =============================================================================
# SIGNUP / CONFIRMATION
# =============================================================================


@bp.get("/signup")
def signup_get():
    s = db_session()
    return render_template("auth/signup.html", departments=list_departments(s), payload={})


@bp.post("/signup")
def signup_post():
    s = db_session()
    payload = {
        "name": normalize_text(request.form.get("name")),
        "email": normalize_text(request.form.get("email")).lower(),
        "department_id": request.form.get("department_id"),
    }
    password = request.form.get("password") or ""
    confirm = request.form.get("confirm_password") or ""

    errors: list[str] = []
    if not payload["name"]:
        errors.append("Name is required.")
    if not is_valid_email(payload["email"]):
        errors.append("A valid email address is required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if password != confirm:
        errors.append("Passwords do not match.")
    if not errors and s.query(User).filter(User.email == payload["email"]).one_or_none():
        errors.append("An account with this email already exists.")
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("auth/signup.html", departments=list_departments(s), payload=payload), 400

    department_id = parse_int(payload["department_id"])
    department = get_department(s, department_id) if department_id else None
    require_confirmation = bool(current_app.config.get("REQUIRE_EMAIL_CONFIRMATION"))
    try:
        user = User(
            email=payload["email"],
            password_hash=generate_password_hash(password),
            is_active=True,
            email_confirmed_at=None if require_confirmation else datetime.utcnow(),
        )
        s.add(user)
        s.flush()
        create_sales_rep(s, user=user, name=payload["name"], department_id=department.id if department else None)
        record_event(s, actor=user, action="auth.signup", entity_type="User", entity_id=str(user.id))
        s.commit()
    except IntegrityError:
        s.rollback()
        flash("An account with this email already exists.", "danger")
        return render_template("auth/signup.html", departments=list_departments(s), payload=payload), 400

    if require_confirmation:
        link = _external_url("auth.confirm_email", token=make_confirm_token(user))
        send_mail(
            user.email,
            "Confirm your SalesCRM account",
            f"Welcome to SalesCRM.\n\nConfirm your email address by opening this link:\n{link}\n",
        )
    current_app.logger.info("New account %s (confirmation required: %s)", user.email, require_confirmation)
    return render_template("auth/signup_success.html", email=user.email, require_confirmation=require_confirmation)


@bp.get("/confirm/<token>")
def confirm_email(token: str):
    s = db_session()
    try:
        data = _serializer(CONFIRM_SALT).loads(token, max_age=CONFIRM_MAX_AGE)
    except SignatureExpired:
        flash("The confirmation link has expired. Please sign up again or contact an administrator.", "danger")
        return redirect(url_for("auth.login_get"))
    except BadSignature:
        flash("The confirmation link is invalid.", "danger")
        return redirect(url_for("auth.login_get"))

    user = s.get(User, int(data.get("uid") or 0))
    if not user or user.email != data.get("email"):
        flash("The confirmation link is invalid.", "danger")
        return redirect(url_for("auth.login_get"))
    if user.email_confirmed_at is None:
        user.email_confirmed_at = datetime.utcnow()
        record_event(s, actor=user, action="auth.email_confirmed", entity_type="User", entity_id=str(user.id))
        s.commit()
    flash("Email confirmed. You can now sign in.", "success")
    return redirect(url_for("auth.login_get"))


# =============================================================================
# PASSWORD RESET
# =============================================================================


@bp.get("/forgot-password")
def forgot_password_get():
    return render_template("auth/forgot_password.html")


@bp.post("/forgot-password")
def forgot_password_post():
    s = db_session()
    email = normalize_text(request.form.get("email")).lower()
    user = s.query(User).filter(User.email == email).one_or_none() if email else None
    if user and user.is_active:
        link = _external_url("auth.reset_password_get", token=make_reset_token(user))
        send_mail(
            user.email,
            "Reset your SalesCRM password",
            f"A password reset was requested for your account.\n\nSet a new password here:\n{link}\n\n"
            "If you did not request this, you can ignore this email.\n",
        )
        record_event(s, actor=user, action="auth.password_reset_requested", entity_type="User", entity_id=str(user.id))
        s.commit()
    # Same response either way so the form does not reveal which emails have accounts.
    flash("If an account exists for that email, a reset link has been sent.", "info")
    return redirect(url_for("auth.login_get"))


def _user_from_reset_token(token: str) -> User | None:
    try:
        data = _serializer(RESET_SALT).loads(token, max_age=current_app.config.get("PASSWORD_RESET_MAX_AGE") or 3600)
    except (SignatureExpired, BadSignature):
        return None
    s = db_session()
    user = s.get(User, int(data.get("uid") or 0))
    if not user or not user.is_active or user.password_hash[-16:] != data.get("ph"):
        return None
    return user


@bp.get("/reset-password/<token>")
def reset_password_get(token: str):
    if _user_from_reset_token(token) is None:
        flash("The reset link is invalid or has expired.", "danger")
        return redirect(url_for("auth.forgot_password_get"))
    return render_template("auth/reset_password.html", token=token)


@bp.post("/reset-password/<token>")
def reset_password_post(token: str):
    user = _user_from_reset_token(token)
    if user is None:
        flash("The reset link is invalid or has expired.", "danger")
        return redirect(url_for("auth.forgot_password_get"))
    password = request.form.get("password") or ""
    confirm = request.form.get("confirm_password") or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        flash(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", "danger")
        return render_template("auth/reset_password.html", token=token), 400
    if password != confirm:
        flash("Passwords do not match.", "danger")
        return render_template("auth/reset_password.html", token=token), 400

    s = db_session()
    user.password_hash = generate_password_hash(password)
    record_event(s, actor=user, action="auth.password_reset", entity_type="User", entity_id=str(user.id))
    s.commit()
    flash("Password updated. Please sign in.", "success")
    return redirect(url_for("auth.login_get"))
