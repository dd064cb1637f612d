"""
Database access for the release and seed scripts, which run without a Flask app.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.salescrm.db import create_db_engine, make_sessionmaker, normalize_database_url

DEFAULT_DATABASE_URL = "sqlite:///salescrm.db"


def resolve_database_url(explicit: str | None = None) -> str:
    return normalize_database_url(explicit or os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL)


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    """One-shot engine + session; commits on success and disposes the engine either way."""
    engine = create_db_engine(db_url)
    s: Session = make_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
