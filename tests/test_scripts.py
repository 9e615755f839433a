import pytest
from sqlalchemy import create_engine, inspect
from werkzeug.security import check_password_hash

from app.portal.models import Base, Role, User
from scripts import init_db, release, start
from scripts._db_utils import script_session


def test_seed_is_idempotent(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'seed.db'}"
    engine = create_engine(db_url)
    Base.metadata.create_all(bind=engine)
    engine.dispose()

    monkeypatch.setenv("ADMIN_EMAIL", "Root@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "first-password")
    init_db.seed_only(database_url=db_url)

    monkeypatch.setenv("ADMIN_PASSWORD", "second-password")
    init_db.seed_only(database_url=db_url)

    with script_session(db_url) as s:
        assert {r.key for r in s.query(Role).all()} == {"admin", "user", "viewer"}
        users = s.query(User).all()
        assert [u.email for u in users] == ["root@example.com"]
        assert users[0].role_key == "admin"
        # Re-running never resets an existing password
        assert check_password_hash(users[0].password_hash, "first-password")
        assert users[0].permission_keys() == {
            "forms.create",
            "users.manage",
            "submissions.view_all",
            "submissions.edit",
        }


def test_release_migrates_and_seeds_fresh_database(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'release.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ADMIN_EMAIL", "ops@example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "ops-password")

    release.run_release()
    # A second deploy is a no-op
    release.run_release()

    insp = inspect(create_engine(db_url))
    assert {"users", "forms", "submissions", "submission_attachments", "audit_events"} <= set(insp.get_table_names())
    assert "search_text" in {c["name"] for c in insp.get_columns("submissions")}
    with script_session(db_url) as s:
        assert [u.email for u in s.query(User).all()] == ["ops@example.com"]


def test_release_refuses_sqlite_in_production(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///prod.db")
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError):
        release.run_release()


def test_gunicorn_runs_one_threaded_worker():
    argv = start.gunicorn_argv(9000, 16)
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:9000"
    assert argv[argv.index("--workers") + 1] == "1"
    assert argv[argv.index("--worker-class") + 1] == "gthread"
    assert argv[argv.index("--threads") + 1] == "16"


@pytest.mark.parametrize("raw", ["abc", "0", "70000"])
def test_start_rejects_bad_port(monkeypatch, raw):
    monkeypatch.setenv("PORT", raw)
    with pytest.raises(SystemExit):
        start.main()
