from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.salescrm.constants import PRIVILEGED_ROLES, ROLE_ADMIN
from app.salescrm.models import User
from app.salescrm.modules.sales_reps.models import SalesRep

# Scope value that matches no sales_rep_id (ids start at 1).
NO_ROWS = -1


def current_sales_rep() -> SalesRep | None:
    """Sales rep linked to the signed-in user, cached on g for the request."""
    if getattr(g, "current_rep_loaded", False):
        return g.current_rep
    user: User | None = getattr(g, "current_user", None)
    rep = user.sales_rep if user else None
    g.current_rep = rep
    g.current_rep_loaded = True
    return rep


def is_manager_or_admin(rep: SalesRep | None) -> bool:
    return bool(rep and rep.role in PRIVILEGED_ROLES)


def is_admin(rep: SalesRep | None) -> bool:
    return bool(rep and rep.role == ROLE_ADMIN)


def scope_for(rep: SalesRep | None, view_all: bool = False) -> int | None:
    """
    Sales rep id to filter on, or None for every row.
    Only managers/admins asking for the full view get None; everyone else sees their own rows.
    """
    if rep is None:
        return NO_ROWS
    if view_all and is_manager_or_admin(rep):
        return None
    return rep.id


def _login_redirect():
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _login_redirect()
        return fn(*args, **kwargs)

    return wrapped


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    allowed = frozenset(roles)

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login (UX + reduces confusion).
            if not user or not user.is_active:
                return _login_redirect()
            # Authenticated but unauthorized → 403
            rep = current_sales_rep()
            if rep is None or rep.role not in allowed:
                g.missing_role = ", ".join(sorted(allowed))
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def owner_for(rep: SalesRep, requested_id: int | None) -> int:
    """Owning sales rep for a new/edited record: managers/admins may assign anyone, reps always themselves."""
    if requested_id and is_manager_or_admin(rep):
        return requested_id
    return rep.id


def not_found(back_url: str):
    """404 with a link back to the list page the record was expected in."""
    g.back_url = back_url
    abort(404)
