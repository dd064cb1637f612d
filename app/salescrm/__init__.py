import logging
import os
from datetime import timedelta

from flask import Flask, g, render_template, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect

from app.salescrm.config import load_config
from app.salescrm.db import init_db, teardown_db_session

# Registers every mapped table on Base.metadata before any module imports a single model.
from app.salescrm import models  # noqa: F401
from app.salescrm.routes import bp as routes_bp
from app.salescrm.auth import bp as auth_bp, load_current_user
from app.salescrm.admin import bp as admin_bp
from app.salescrm.modules.customers.admin import bp as customers_bp
from app.salescrm.modules.deals.admin import bp as deals_bp
from app.salescrm.modules.activities.admin import bp as activities_bp
from app.salescrm.modules.sales_reps.admin import bp as sales_reps_bp
from app.salescrm.modules.reports.admin import bp as reports_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # CSRF protection (minimal)
    from app.salescrm.security import csrf_required, ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_roles() -> dict:
        from app.salescrm.rbac import current_sales_rep, is_admin, is_manager_or_admin

        rep = current_sales_rep() if getattr(g, "current_user", None) else None
        return {
            "current_rep": rep,
            "is_manager_or_admin": is_manager_or_admin(rep),
            "is_admin": is_admin(rep),
        }

    _register_filters(app)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if csrf_required(request) and not validate_csrf(request):
            app.logger.warning("CSRF rejected: %s %s", request.method, request.path)
            return render_template("errors/400.html", message="CSRF token missing or invalid."), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(customers_bp)
    app.register_blueprint(deals_bp)
    app.register_blueprint(activities_bp)
    app.register_blueprint(sales_reps_bp)
    app.register_blueprint(reports_bp)

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect tables the models expect but the DB lacks.
    # Checked once, on the first request, so tests/scripts can create the schema after create_app().
    app.config.setdefault("_schema_health_checked", False)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            engine = app.extensions.get("sqlalchemy_engine")
            if engine is None:
                raise RuntimeError("sqlalchemy_engine not initialized")
            insp = sa_inspect(engine)
            for table in models.Base.metadata.sorted_tables:
                if not insp.has_table(table.name):
                    missing.append(f"{table.name} (table)")
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)

        app.config["_schema_health_missing"] = missing
        app.config["_schema_health_checked"] = True
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        if not app.config.get("_schema_health_checked"):
            _run_schema_health_check()
        missing = app.config.get("_schema_health_missing") or []
        if missing:
            return render_template("errors/schema_out_of_date.html", missing=missing), 500
        return None

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in the logs.
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        return render_template("errors/500.html"), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html", back_url=getattr(g, "back_url", None)), 404

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_role", None)
        if missing:
            app.logger.warning("Forbidden: missing_role=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_role=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        from flask import flash, redirect, url_for

        flash("Request too large.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("routes.dashboard")), 302

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app


def _register_filters(app: Flask) -> None:
    from app.salescrm.constants import (
        ACTIVITY_TYPE_LABELS,
        CATEGORY_LABELS,
        METRIC_LABELS,
        ROLE_LABELS,
        STATUS_LABELS,
    )
    from app.salescrm.utils import format_axis_amount, format_currency, format_date, rank_mark

    app.add_template_filter(format_currency, "currency")
    app.add_template_filter(format_date, "dateformat")
    app.add_template_filter(format_axis_amount, "axis_amount")
    app.add_template_filter(rank_mark, "rank_mark")

    @app.template_filter("status_label")
    def _status_label(value) -> str:
        return STATUS_LABELS.get(value or "", value or "—")

    @app.template_filter("activity_type_label")
    def _activity_type_label(value) -> str:
        return ACTIVITY_TYPE_LABELS.get(value or "", value or "—")

    @app.template_filter("role_label")
    def _role_label(value) -> str:
        return ROLE_LABELS.get(value or "", value or "—")

    @app.template_filter("category_label")
    def _category_label(value) -> str:
        if not value:
            return "—"
        return CATEGORY_LABELS.get(value, value)

    @app.template_filter("metric_label")
    def _metric_label(value) -> str:
        return METRIC_LABELS.get(value or "", value or "")
