import logging

from accountsync.events import FAILED, PROGRESS, STARTED, CollectingEventChannel, LoggingEventChannel, Publisher
from accountsync.models.account import SyncType
from accountsync.models.email import EmailRecord
from tests.fakes import write_raw_row


def test_record_store_query(stores, account):
    for i, date in enumerate([30, None, 10, 20]):
        stores.emails.upsert(account.id, EmailRecord(id=f"m{i}", subject=f"s{i}", date=date))
    stores.emails.upsert("other-account", EmailRecord(id="x", date=99))

    newest = stores.emails.query(account.id, order_by="date", descending=True)
    assert [r.id for r in newest] == ["m0", "m3", "m2", "m1"]

    recent = stores.emails.query(account.id, where=[lambda r: (r.date or 0) > 15], order_by="date")
    assert [r.id for r in recent] == ["m3", "m0"]
    assert stores.emails.count(account.id) == 4

    assert stores.emails.clear_account(account.id) == 4
    assert stores.emails.count(account.id) == 0
    assert stores.emails.count("other-account") == 1


def test_unreadable_rows_are_skipped(stores, account, tmp_path, caplog):
    stores.emails.upsert(account.id, EmailRecord(id="good"))
    write_raw_row(tmp_path / "cache" / "emails", (account.id, "bad"), {"subject": "no id"})

    with caplog.at_level(logging.WARNING):
        rows = list(stores.emails.iter_account(account.id))

    assert [r.id for r in rows] == ["good"]
    assert "Skipping unreadable" in caplog.text


def test_cursor_tracker(stores):
    assert stores.cursors.get("a", SyncType.MAIL) is None

    state = stores.cursors.set("a", SyncType.MAIL, 12345)
    assert state.last_cursor == "12345"
    assert state.last_sync_at > 0
    assert stores.cursors.get("a", "mail").last_cursor == "12345"

    status = stores.cursors.for_account("a")
    assert set(status) == set(SyncType)
    assert status[SyncType.CONTACTS] is None

    assert stores.cursors.clear("a", SyncType.MAIL) is True
    assert stores.cursors.get("a", SyncType.MAIL) is None


def test_publisher_and_channels(caplog):
    channel = CollectingEventChannel()
    publish = Publisher(channel, SyncType.MAIL)

    publish(STARTED, "acct", "go")
    publish(PROGRESS, "acct", synced=10)

    assert channel.kinds() == [STARTED, PROGRESS]
    assert channel.events[1].data == {"synced": 10}
    assert channel.kinds(SyncType.CALENDAR) == []

    with caplog.at_level(logging.DEBUG, logger="accountsync.events"):
        Publisher(LoggingEventChannel(), SyncType.CONTACTS)(FAILED, "acct", "boom")
    assert caplog.records[-1].levelno == logging.ERROR
    assert "boom" in caplog.text
