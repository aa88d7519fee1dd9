"""Tests for the project completion backfill migration."""
from datetime import datetime
from types import SimpleNamespace

from sqlalchemy import text
from sqlmodel import create_engine

from migrations.migrate_001_backfill_project_completed import is_postgres, migrate
from migrations.migrate_002_snapshot_invoice_line_prices import migrate as migrate_line_prices


def test_backfill_makes_completion_fields_agree(engine, test_session, make_client, make_project):
    acme = make_client()
    stamped = make_project(acme, title="Stamped but open")
    flagged = make_project(acme, title="Flagged without timestamp")
    active = make_project(acme, title="Active")
    with engine.begin() as conn:
        conn.execute(
            text("UPDATE project SET completed = 0, completed_at = :ts WHERE id = :id"),
            {"ts": "2024-03-01 12:00:00.000000", "id": stamped.id},
        )
        conn.execute(text("UPDATE project SET completed = 1, completed_at = NULL WHERE id = :id"), {"id": flagged.id})

    migrate(engine)

    for project in (stamped, flagged, active):
        test_session.refresh(project)
    assert stamped.completed is True
    assert stamped.completed_at.replace(tzinfo=None) == datetime(2024, 3, 1, 12, 0)
    assert flagged.completed is True
    assert flagged.completed_at is not None
    assert active.completed is False
    assert active.completed_at is None


def test_backfill_is_idempotent(engine, test_session, make_client, make_project):
    project = make_project(make_client())
    with engine.begin() as conn:
        conn.execute(text("UPDATE project SET completed = 1, completed_at = NULL WHERE id = :id"), {"id": project.id})

    migrate(engine)
    test_session.refresh(project)
    first_stamp = project.completed_at
    migrate(engine)
    test_session.refresh(project)

    assert project.completed_at == first_stamp


def test_skips_missing_table():
    empty = create_engine("sqlite://")

    migrate(empty)

    with empty.connect() as conn:
        assert conn.execute(text("SELECT name FROM sqlite_master WHERE name = 'project'")).fetchone() is None


def test_is_postgres(engine):
    assert is_postgres(engine) is False
    assert is_postgres(SimpleNamespace(url="postgresql://user:pw@localhost/billing")) is True


def legacy_billing_engine():
    """SQLite database with invoice lines that predate stored prices."""
    legacy = create_engine("sqlite://")
    with legacy.begin() as conn:
        conn.execute(text("CREATE TABLE project (id INTEGER PRIMARY KEY, rate NUMERIC(10, 2))"))
        conn.execute(text("CREATE TABLE time_entry (id INTEGER PRIMARY KEY, project_id INTEGER)"))
        conn.execute(text("CREATE TABLE service (id INTEGER PRIMARY KEY, fee NUMERIC(10, 2))"))
        conn.execute(text("CREATE TABLE invoice_entry (id INTEGER PRIMARY KEY, invoice_id INTEGER, time_entry_id INTEGER)"))
        conn.execute(text("CREATE TABLE invoice_service (id INTEGER PRIMARY KEY, invoice_id INTEGER, service_id INTEGER)"))
        conn.execute(text("INSERT INTO project (id, rate) VALUES (1, 100), (2, NULL)"))
        conn.execute(text("INSERT INTO time_entry (id, project_id) VALUES (10, 1), (11, 2)"))
        conn.execute(text("INSERT INTO service (id, fee) VALUES (20, 250)"))
        conn.execute(text("INSERT INTO invoice_entry (invoice_id, time_entry_id) VALUES (1, 10), (1, 11)"))
        conn.execute(text("INSERT INTO invoice_service (invoice_id, service_id) VALUES (1, 20)"))
    return legacy


def test_line_prices_backfilled_from_current_values():
    legacy = legacy_billing_engine()

    migrate_line_prices(legacy)

    with legacy.connect() as conn:
        rates = conn.execute(text("SELECT time_entry_id, rate FROM invoice_entry ORDER BY time_entry_id")).fetchall()
        fees = conn.execute(text("SELECT fee FROM invoice_service")).fetchall()
    assert [(row[0], float(row[1])) for row in rates] == [(10, 100.0), (11, 0.0)]
    assert [float(row[0]) for row in fees] == [250.0]


def test_line_prices_migration_is_idempotent():
    legacy = legacy_billing_engine()
    migrate_line_prices(legacy)
    with legacy.begin() as conn:
        conn.execute(text("UPDATE project SET rate = 200 WHERE id = 1"))

    migrate_line_prices(legacy)

    with legacy.connect() as conn:
        rate = conn.execute(text("SELECT rate FROM invoice_entry WHERE time_entry_id = 10")).scalar_one()
    assert float(rate) == 100.0


def test_line_prices_skips_current_schema(engine):
    migrate_line_prices(engine)

    with engine.connect() as conn:
        columns = [row[1] for row in conn.execute(text("PRAGMA table_info(invoice_entry)")).fetchall()]
    assert columns.count("rate") == 1


def test_line_prices_skips_missing_tables():
    migrate_line_prices(create_engine("sqlite://"))
