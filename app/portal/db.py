"""
Engine + session wiring.

One engine per app (``app.extensions["sqlalchemy_engine"]``) and one session
per request, stored on ``g`` and closed on app-context teardown.
"""
from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator
from typing import Any

from flask import Flask, current_app, g
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker


def engine_options(db_url: str) -> dict[str, Any]:
    opts: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("postgres"):
        opts.update(pool_recycle=1800, pool_size=5, max_overflow=10, pool_timeout=30)
    elif db_url.startswith("sqlite"):
        # Streaming responses finish on a different thread than the one that opened them.
        opts["connect_args"] = {"check_same_thread": False}
    return opts


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """SQLite ignores ON DELETE CASCADE/SET NULL unless this pragma is on per connection."""

    @event.listens_for(engine, "connect")
    def _fk_pragma(dbapi_connection, _record):
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


def init_db(app: Flask) -> Engine:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **engine_options(db_url))
    if engine.dialect.name == "sqlite":
        enable_sqlite_foreign_keys(engine)

    if app.config.get("ENV") not in ("prod", "production"):
        @event.listens_for(engine, "checkout")
        def _log_checkout(dbapi_connection, connection_record, connection_proxy):
            app.logger.debug("DB connection checkout from pool")

    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    return engine


def db_session(app: Flask | None = None) -> Session:
    """Request-scoped session. Use inside request handlers."""
    s = getattr(g, "db_session", None)
    if s is None:
        sm = (app or current_app).extensions["sqlalchemy_sessionmaker"]
        s = g.db_session = sm()
    return s


def teardown_db_session(exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is None:
        return
    try:
        if exc is not None:
            s.rollback()
    finally:
        s.close()


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts and tests: yields a session and commits/rolls back.
    """
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
