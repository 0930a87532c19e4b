import asyncio

import pytest

from accountsync.errors import AuthenticationError, NotFoundError, SyncInProgressError
from accountsync.models.account import SyncType
from accountsync.models.results import CalendarSyncResult, SyncResult
from accountsync.service import AccountService, SyncGuard
from tests.fakes import http_error, make_message, make_person


@pytest.mark.asyncio
async def test_sync_guard_refuses_overlap():
    guard = SyncGuard()

    async with guard.hold("acct", SyncType.MAIL):
        assert guard.is_running("acct", SyncType.MAIL)
        assert not guard.is_running("acct", SyncType.CALENDAR)
        with pytest.raises(SyncInProgressError):
            async with guard.hold("acct", SyncType.MAIL):
                pass
        # other types and accounts are independent
        async with guard.hold("acct", SyncType.CONTACTS):
            pass
        async with guard.hold("other", SyncType.MAIL):
            pass

    assert not guard.is_running("acct", SyncType.MAIL)


@pytest.mark.asyncio
async def test_concurrent_sync_of_same_type_is_rejected(service, account, google):
    started = asyncio.Event()
    release = asyncio.Event()
    original_sync = service.mail.sync

    async def slow_sync(session, **kwargs):
        started.set()
        await release.wait()
        return await original_sync(session, **kwargs)

    service.mail.sync = slow_sync
    first = asyncio.create_task(service.sync_emails(account.id))
    await started.wait()

    with pytest.raises(SyncInProgressError):
        await service.sync_emails(account.id)
    assert service.get_sync_status(account.id)["mail"] is None

    release.set()
    assert (await first).type == "full"


@pytest.mark.asyncio
async def test_sync_all_reports_each_type(service, account, google):
    google.gmail.add(make_message("m1"), make_message("m2"))
    google.calendar.failures.always("events.list", http_error(403, "forbidden"))
    google.people.pages = [{"connections": [make_person("c1", "Zoe Zed", "zoe@example.com")]}]

    results = await service.sync_all(account.id)

    assert results["emails"] == SyncResult(synced=2, type="full")
    assert "error" in results["calendar"]
    assert results["contacts"] == SyncResult(synced=1, type="full")

    status = service.get_sync_status(account.id)
    assert status["mail"]["last_cursor"] == "5000"
    assert status["mail"]["running"] is False
    assert status["calendar"] is None
    assert status["contacts"]["last_cursor"] is None


@pytest.mark.asyncio
async def test_sync_all_calendars_through_service(service, account, google):
    result = await service.sync_all_calendars(account.id)
    assert isinstance(result, CalendarSyncResult)
    assert result.calendars == 1


@pytest.mark.asyncio
async def test_invalid_token_stops_remote_work(service, account, tokens, google):
    tokens.valid = False

    with pytest.raises(AuthenticationError):
        await service.sync_emails(account.id)
    assert google.gmail.calls == {}
    assert tokens.checked == [account.email]


@pytest.mark.asyncio
async def test_mutations_check_cache_before_token(service, account, tokens):
    with pytest.raises(NotFoundError):
        await service.mark_as_read(account.id, "missing")
    assert tokens.checked == []


@pytest.mark.asyncio
async def test_local_search_skips_token_check(service, account, tokens, stores):
    result = await service.search_emails(account.id, "anything")
    assert result.total == 0
    assert tokens.checked == []


@pytest.mark.asyncio
async def test_empty_batches_short_circuit(service, account, tokens):
    assert (await service.batch_trash_emails(account.id, [])).trashed == 0
    assert (await service.batch_modify_emails(account.id, [], mark_read=True)).modified == 0
    assert tokens.checked == []


@pytest.mark.asyncio
async def test_remove_account_drops_everything(service, account, google):
    google.gmail.add(make_message("m1"))
    await service.sync_emails(account.id)
    service.save_search(account.id, "s", "q")
    shared = service.create_template("Shared")
    service.create_template("Mine", account_id=account.id)
    service.create_signature(account.id, "Sig", "--", is_default=True)

    assert service.remove_account(account.id) is True

    assert service.stores.emails.count(account.id) == 0
    assert [t.id for t in service.get_templates(account.id)] == [shared.id]
    assert service.get_signatures(account.id) == []
    assert service.get_sync_status(account.id)["mail"] is None
    assert service.list_accounts() == []
    with pytest.raises(NotFoundError):
        service.get_account(account.id)


def test_accounts_are_unique_by_email(service, account):
    again = service.add_account("ME@example.com")
    assert again.id == account.id
    other = service.add_account("work@example.com", "Work")
    assert {a.email for a in service.list_accounts()} == {"work@example.com", "me@example.com"}
    assert service.find_account("work@example.com").id == other.id
    assert service.find_account("nobody@example.com") is None


def test_service_reads_settings_from_environment(monkeypatch, tmp_path, stores, tokens):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ACCOUNTSYNC_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("ACCOUNTSYNC_MAX_RETRIES", "2")
    monkeypatch.setenv("ACCOUNTSYNC_BATCH_CHUNK_SIZE", "25")

    service = AccountService(stores=stores, tokens=tokens)

    assert service.settings.max_retries == 2
    assert service.batch.chunk_size == 25
