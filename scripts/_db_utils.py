from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.portal.db import enable_sqlite_foreign_keys, engine_options


def create_script_engine(db_url: str):
    engine = create_engine(db_url, **engine_options(db_url))
    if engine.dialect.name == "sqlite":
        enable_sqlite_foreign_keys(engine)
    return engine


@contextmanager
def script_session(db_url: str):
    """Standalone session for CLI scripts (no Flask app); commits on success."""
    engine = create_script_engine(db_url)
    s: Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
