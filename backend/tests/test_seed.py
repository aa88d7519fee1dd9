from sqlmodel import select

import billing
from models import Client, Service
from seed import DEMO_ACCOUNT_ID, seed_database


def test_seed_populates_demo_account(test_session):
    added = seed_database(test_session)

    assert added == 11
    clients = test_session.exec(select(Client).where(Client.user_id == DEMO_ACCOUNT_ID)).all()
    assert sorted(c.name for c in clients) == ["Acme Corp", "Globex"]
    assert len(test_session.exec(select(Service)).all()) == 2

    items = billing.list_billable_items(test_session, DEMO_ACCOUNT_ID)
    assert len(items["time_entries"]) == 4


def test_seed_skips_when_data_exists(test_session):
    seed_database(test_session)

    assert seed_database(test_session) == 0
