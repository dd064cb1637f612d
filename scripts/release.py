"""
Release phase: bring the schema to the latest Alembic revision, then seed the
default departments/groups and the admin account.

Both steps are idempotent, so a failed deploy can simply be released again.
scripts/start.py runs this before handing the process to gunicorn.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from alembic import command
from alembic.config import Config

from app.salescrm.db import normalize_database_url

PRODUCTION_ENVS = ("prod", "production")


def release_database_url() -> str:
    """
    DATABASE_URL, required here: a release never falls back to a local SQLite file,
    and production must point at Postgres.
    """
    db_url = normalize_database_url(os.environ.get("DATABASE_URL"))
    if not db_url:
        raise RuntimeError("DATABASE_URL must be set for the release phase.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in PRODUCTION_ENVS and db_url.startswith("sqlite"):
        raise RuntimeError("ENV=production needs a Postgres DATABASE_URL, not SQLite.")
    return db_url


def migrate(db_url: str, revision: str = "head") -> None:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    # ConfigParser interpolation: a literal % in the password must be doubled.
    cfg.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    command.upgrade(cfg, revision)


def run_release() -> None:
    db_url = release_database_url()
    print(f"[release] ENV={os.environ.get('ENV') or '(unset)'}", flush=True)

    print("[release] alembic upgrade head", flush=True)
    migrate(db_url)

    print("[release] seeding departments and admin account", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("[release] done", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
