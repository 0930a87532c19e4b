import json

import pytest

from accountsync.errors import NotFoundError
from accountsync.events import COMPLETED, PROGRESS, STARTED
from accountsync.models.account import SyncType
from accountsync.models.contact import PERSON_FIELDS, ContactRecord
from accountsync.sync.contacts import ContactsSyncCoordinator
from tests.fakes import make_person


@pytest.fixture
def contacts(stores, events):
    return ContactsSyncCoordinator(stores.contacts, stores.cursors, events)


@pytest.mark.asyncio
async def test_sync_walks_every_page(contacts, stores, session, google, events):
    google.people.pages = [
        {
            "connections": [make_person("c1", "Zoe Zed", "zoe@example.com"), make_person("c2", "Adam Ant", "adam@example.com")],
            "nextPageToken": "1",
        },
        {
            "connections": [make_person("c3", "Mia Moe", "mia@work.example",
                                        organizations=[{"name": "Acme", "title": "CTO"}])],
            "nextSyncToken": "people-sync-1",
        },
    ]

    result = await contacts.sync(session, page_size=2)

    assert result.synced == 3
    first, second = google.people.calls
    assert first == {"resourceName": "people/me", "pageSize": 2, "personFields": PERSON_FIELDS}
    assert second["pageToken"] == "1"
    mia = contacts.get_contact(session.account_id, "c3")
    assert mia.company == "Acme"
    assert mia.job_title == "CTO"
    assert mia.synced_at is not None
    assert stores.cursors.get(session.account_id, SyncType.CONTACTS).last_cursor == "people-sync-1"
    assert events.kinds(SyncType.CONTACTS) == [STARTED, PROGRESS, PROGRESS, COMPLETED]


@pytest.mark.asyncio
async def test_get_contacts_search_and_order(contacts, session, google):
    google.people.pages = [{"connections": [
        make_person("c1", "Zoe Zed", "zoe@example.com"),
        make_person("c2", "Adam Ant", "adam@example.com"),
        make_person("c3", "Mia Moe", "mia@work.example"),
    ]}]
    await contacts.sync(session)
    account_id = session.account_id

    everyone = contacts.get_contacts(account_id)
    assert [p["names"][0]["displayName"] for p in everyone] == ["Adam Ant", "Mia Moe", "Zoe Zed"]

    by_email = contacts.get_contacts(account_id, search="WORK.example")
    assert [p["resourceName"] for p in by_email] == ["people/c3"]

    assert len(contacts.get_contacts(account_id, limit=1, offset=1)) == 1


def test_to_person_rebuilds_from_columns_when_payload_is_bad():
    record = ContactRecord(
        id="c9",
        resource_name="people/c9",
        display_name="Pat Doe",
        email="pat@example.com",
        company="Initech",
        raw_payload="{not json",
    )

    person = record.to_person()

    assert person["resourceName"] == "people/c9"
    assert person["emailAddresses"] == [{"value": "pat@example.com"}]
    assert person["organizations"] == [{"name": "Initech", "title": None}]
    assert person["phoneNumbers"] == []


def test_from_person_keeps_raw_payload():
    person = make_person("c1", "Zoe Zed", "zoe@example.com")
    record = ContactRecord.from_person(person)
    assert record.id == "c1"
    assert json.loads(record.raw_payload) == person
    assert record.to_person() == person


def test_missing_contact(contacts, account):
    with pytest.raises(NotFoundError):
        contacts.get_contact(account.id, "nobody")
