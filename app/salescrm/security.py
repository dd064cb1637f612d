"""
Session-bound CSRF tokens.

Forms post the token in a hidden csrf_token field; scripted requests send it in
the X-CSRF-Token header (base.html exposes it in a meta tag). Auth endpoints
(login, signup, password reset) are exempt.
"""

import secrets

from flask import Request, session

SESSION_KEY = "csrf_token"
HEADER_NAME = "X-CSRF-Token"
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
EXEMPT_BLUEPRINTS = frozenset({"auth"})


def ensure_csrf_token() -> str:
    token = session.get(SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[SESSION_KEY] = token
    return token


def csrf_required(req: Request) -> bool:
    return req.method in UNSAFE_METHODS and req.blueprint not in EXEMPT_BLUEPRINTS


def validate_csrf(req: Request) -> bool:
    submitted = str(req.headers.get(HEADER_NAME) or req.form.get(SESSION_KEY) or "")
    expected = str(session.get(SESSION_KEY) or "")
    if not submitted or not expected:
        return False
    return secrets.compare_digest(submitted, expected)
