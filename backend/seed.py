from datetime import date, timedelta
from decimal import Decimal

from sqlmodel import Session, select

from db import engine
from models import Client, Project, Service, TimeEntry

DEMO_ACCOUNT_ID = 1


def seed_database(session: Session, account_id: int = DEMO_ACCOUNT_ID) -> int:
    """Seed the database with a demo account. Returns the number of rows added."""
    # Check if data already exists
    existing = session.exec(select(Client)).first()
    if existing:
        print("Database already has data, skipping seed.")
        return 0

    today = date.today()

    acme = Client(user_id=account_id, name="Acme Corp", contact="billing@acme.example")
    globex = Client(user_id=account_id, name="Globex", contact=None)

    redesign = Project(
        client=acme,
        title="Website Redesign",
        rate=Decimal("100.00"),
        due_date=today + timedelta(days=5),
    )
    api = Project(
        client=acme,
        title="API Integration",
        rate=Decimal("120.00"),
        due_date=today + timedelta(days=30),
    )
    audit = Project(client=globex, title="Security Audit", rate=None)

    entries = [
        TimeEntry(project=redesign, date=today - timedelta(days=3), hours=Decimal("3"), description="Wireframes"),
        TimeEntry(project=redesign, date=today - timedelta(days=2), hours=Decimal("1.5"), description="Review call"),
        TimeEntry(project=api, date=today - timedelta(days=1), hours=Decimal("4.25"), description="OAuth flow"),
        TimeEntry(project=audit, date=today, hours=Decimal("2"), description="Kickoff"),
    ]

    services = [
        Service(user_id=account_id, name="Domain setup", description="DNS and TLS", fee=Decimal("250.00")),
        Service(user_id=account_id, name="Hosting (1 month)", fee=Decimal("80.00")),
    ]

    rows = [acme, globex, redesign, api, audit, *entries, *services]
    session.add_all(rows)
    session.commit()
    print(f"Seeded database with {len(rows)} sample rows.")
    return len(rows)


if __name__ == "__main__":
    from db import create_db_and_tables

    create_db_and_tables()
    with Session(engine) as session:
        seed_database(session)
