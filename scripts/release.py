"""
Release step: bring the schema to head, then seed roles and the first admin.

Both halves are safe to repeat on every deploy. Existing admin passwords are
never reset.

  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _database_url() -> str:
    url = (os.environ.get("DATABASE_URL") or "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is not set; refusing to migrate an implicit SQLite file.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and url.startswith("sqlite"):
        raise RuntimeError("ENV is production but DATABASE_URL points at SQLite.")
    return url


def alembic_config(db_url: str):
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    # Absolute paths so the release works from any working directory.
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def run_release(db_url: str | None = None) -> None:
    from alembic import command

    db_url = db_url or _database_url()
    cfg = alembic_config(db_url)

    print("[release] upgrading schema to head", flush=True)
    command.upgrade(cfg, "head")
    command.current(cfg)

    print("[release] seeding roles, permissions and admin", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("[release] done", flush=True)


if __name__ == "__main__":
    run_release()
