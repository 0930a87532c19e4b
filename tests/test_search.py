import pytest

from accountsync.connectors.gmail_parser import parse_message
from accountsync.search import (
    CONTAINS,
    DATE_GTE,
    DATE_LT,
    FLAG,
    LABEL,
    LENGTH_GT,
    NOT_CONTAINS,
    EmailSearch,
    parse_date,
    parse_relative,
    parse_size,
    translate,
)
from accountsync.store.cursors import now_millis
from tests.fakes import http_error, make_message

DAY = 24 * 60 * 60 * 1000


@pytest.fixture
def corpus(stores, account):
    now = now_millis()
    messages = [
        make_message("old-report", subject="Weekly report", sender="Alice <alice@example.com>",
                     date=now - 10 * DAY, labels=["INBOX"], body="numbers " * 200),
        make_message("new-report", subject="Weekly report draft", sender="Alice <alice@example.com>",
                     date=now - 1 * DAY, labels=["INBOX", "UNREAD"], body="short"),
        make_message("invoice", subject="Invoice 42", sender="Billing <billing@shop.example>",
                     date=now - 3 * DAY, labels=["INBOX", "STARRED", "Label_7"], attachment="invoice-42.pdf"),
        make_message("newsletter", subject="News", sender="News <news@example.org>",
                     date=now - 40 * DAY, labels=["CATEGORY_PROMOTIONS"], body="unsubscribe here"),
    ]
    for msg in messages:
        stores.emails.upsert(account.id, parse_message(msg))
    return messages


def _ids(result):
    return {email["id"] for email in result.emails}


# -----------------------------------------------------------------------------
# translate
# -----------------------------------------------------------------------------

def test_value_parsers():
    assert parse_date("2024/01/02") == parse_date("2024-01-02") == 1704153600000
    assert parse_date("yesterday") is None
    assert parse_relative("7d") == 7 * DAY
    assert parse_relative("2w") == 14 * DAY
    assert parse_relative("soon") is None
    assert parse_size("5M") == 5 * 1024 * 1024
    assert parse_size("100") == 100
    assert parse_size("big") is None


def test_operators_and_free_text():
    query = translate('from:alice subject:"weekly report" has:attachment older_than:7d budget', now=100 * DAY)

    kinds = [clause.kind for clause in query.clauses]
    assert kinds == [CONTAINS, CONTAINS, FLAG, DATE_LT, CONTAINS]
    assert query.params == ["alice", "weekly report", True, 93 * DAY, "budget"]
    assert query.clauses[0].operand == ("from_email", "from_name")


def test_and_or_are_dropped_and_not_negates():
    query = translate("invoice AND paid OR NOT spam")

    assert [c.kind for c in query.clauses] == [NOT_CONTAINS, CONTAINS, CONTAINS]
    assert query.params == ["spam", "invoice", "paid"]


def test_flag_must_be_a_whole_token():
    assert len(translate("is:unread")) == 1
    assert translate("is:read").params == [True]
    assert translate("is:unread").params == [False]
    # not a flag, just text
    assert translate("this:is:unreadable").clauses[0].kind == CONTAINS


def test_invalid_values_are_skipped():
    query = translate("after:someday larger:huge newer_than:soon")
    assert len(query) == 0


def test_misc_operators():
    query = translate("after:2024/01/01 larger:1K label:important", now=0)
    assert [c.kind for c in query.clauses] == [DATE_GTE, LENGTH_GT, LABEL]
    assert query.params == [parse_date("2024-01-01"), 1024, "IMPORTANT"]


# -----------------------------------------------------------------------------
# search_emails
# -----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_older_than(stores, session, corpus):
    search = EmailSearch(stores.emails, stores.saved_searches)

    result = await search.search_emails(session, "older_than:7d")

    assert _ids(result) == {"old-report", "newsletter"}
    assert result.total == 2
    assert result.source == "local"
    # newest first
    assert [e["id"] for e in result.emails] == ["old-report", "newsletter"]
    assert "raw_payload" not in result.emails[0]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "query,expected",
    [
        ('subject:"weekly report"', {"old-report", "new-report"}),
        ("from:billing", {"invoice"}),
        ("is:unread", {"new-report"}),
        ("is:starred", {"invoice"}),
        ("has:attachment", {"invoice"}),
        ("filename:invoice-42", {"invoice"}),
        ("label:label_7", {"invoice"}),
        ("larger:1K", {"old-report"}),
        ("report NOT draft", {"old-report"}),
        ("newer_than:5d", {"new-report", "invoice"}),
        ("unsubscribe", {"newsletter"}),
        ("report OR invoice", set()),
    ],
)
async def test_local_queries(stores, session, corpus, query, expected):
    search = EmailSearch(stores.emails, stores.saved_searches)
    assert _ids(await search.search_emails(session, query)) == expected


@pytest.mark.asyncio
async def test_pagination_keeps_total(stores, session, corpus):
    search = EmailSearch(stores.emails, stores.saved_searches)

    page = await search.search_emails(session, "", limit=2, offset=1)

    assert len(page.emails) == 2
    assert page.total == 4


@pytest.mark.asyncio
async def test_remote_search_fetches_missing_messages(stores, session, google, corpus):
    google.gmail.add(make_message("new-report"), make_message("remote-only", subject="Weekly report v3"))
    search = EmailSearch(stores.emails, stores.saved_searches)

    result = await search.search_emails(session, "weekly report", search_remote=True)

    assert result.source == "hybrid"
    assert result.remote_total == 2
    assert "remote-only" in _ids(result)
    assert stores.emails.get(session.account_id, "remote-only") is not None
    fetched = [call["id"] for call in google.gmail.calls["messages.get"]]
    assert fetched == ["remote-only"]
    assert google.gmail.calls["messages.list"][0]["q"] == "weekly report"


@pytest.mark.asyncio
async def test_remote_search_without_new_ids_stays_local(stores, session, google, corpus):
    google.gmail.add(make_message("invoice"))
    search = EmailSearch(stores.emails, stores.saved_searches)

    result = await search.search_emails(session, "invoice", search_remote=True)

    assert result.source == "local"
    assert "messages.get" not in google.gmail.calls


@pytest.mark.asyncio
async def test_remote_search_caps_fetches_and_skips_failures(stores, session, google):
    google.gmail.add(*[make_message(f"r{i}") for i in range(15)])
    google.gmail.failures.always("messages.get:r0", http_error(404, "notFound"))
    search = EmailSearch(stores.emails, stores.saved_searches)

    result = await search.search_emails(session, "anything", search_remote=True)

    assert len(google.gmail.calls["messages.get"]) == 10
    assert len(result.emails) == 9
    assert result.remote_total == 15


@pytest.mark.asyncio
async def test_remote_failure_returns_local_results(stores, session, google, corpus):
    google.gmail.failures.always("messages.list", http_error(400, "invalidArgument"))
    search = EmailSearch(stores.emails, stores.saved_searches)

    result = await search.search_emails(session, "invoice", search_remote=True)

    assert _ids(result) == {"invoice"}
    assert result.source == "local"
    assert result.remote_error


# -----------------------------------------------------------------------------
# saved searches
# -----------------------------------------------------------------------------

def test_saved_search_lifecycle(stores, account):
    search = EmailSearch(stores.emails, stores.saved_searches)
    weekly = search.save_search(account.id, "Weekly", "subject:weekly")
    bills = search.save_search(account.id, "Bills", "from:billing", is_favorite=True)
    search.save_search("someone-else", "Other", "x")

    search.record_search_usage(weekly.id)
    search.record_search_usage(weekly.id)

    listed = search.get_saved_searches(account.id)
    assert [s.id for s in listed] == [bills.id, weekly.id]
    assert listed[1].use_count == 2
    assert [s.id for s in search.get_saved_searches(account.id, favorites_only=True)] == [bills.id]
    assert [s.id for s in search.get_recent_searches(account.id)] == [weekly.id]

    renamed = search.update_saved_search(weekly.id, name="Weekly reports", use_count=99)
    assert renamed.name == "Weekly reports"
    assert renamed.use_count == 2

    with pytest.raises(ValueError):
        search.update_saved_search(weekly.id, use_count=1)

    assert search.delete_saved_search(bills.id) is True
    assert search.delete_saved_search(bills.id) is False
