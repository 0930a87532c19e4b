import json

from accountsync.connectors.gmail_parser import decode_body, iter_attachments, parse_message
from tests.fakes import b64url, make_message


def test_parse_full_message():
    msg = make_message(
        "abc",
        subject="Lunch?",
        sender='"Doe, Jane" <jane@example.com>',
        to='Bob <bob@example.com>, "Smith, Al" <al@example.com>',
        labels=["INBOX", "UNREAD", "STARRED"],
        date=1_700_000_000_123,
        body="Noon works",
        extra_headers={"Cc": "team@example.com"},
    )

    record = parse_message(msg)

    assert record.id == "abc"
    assert record.thread_id == "thread-abc"
    assert record.message_id == "<abc@mail.example.com>"
    assert record.from_name == "Doe, Jane"
    assert record.from_email == "jane@example.com"
    assert record.to_emails == ["bob@example.com", "al@example.com"]
    assert record.cc_emails == ["team@example.com"]
    assert record.date == 1_700_000_000_123
    assert record.body_text == "Noon works"
    assert record.is_read is False
    assert record.is_starred is True
    assert record.has_attachments is False
    assert json.loads(record.raw_payload) == msg
    assert record.synced_at is not None


def test_single_part_html_body():
    msg = {
        "id": "h1",
        "labelIds": ["INBOX"],
        "payload": {
            "mimeType": "text/html",
            "headers": [{"name": "Subject", "value": "Promo"}],
            "body": {"data": b64url("<p>Sale</p>")},
        },
    }

    record = parse_message(msg)

    assert record.body_html == "<p>Sale</p>"
    assert record.body_text == ""
    assert record.is_read is True
    assert record.date is None


def test_nested_attachments_are_found():
    payload = {
        "parts": [
            {"mimeType": "multipart/alternative", "parts": [
                {"partId": "0.0", "mimeType": "text/plain", "filename": "", "body": {"data": b64url("hi")}},
            ]},
            {"mimeType": "multipart/mixed", "parts": [
                {"partId": "1.0", "mimeType": "image/png", "filename": "a.png",
                 "body": {"attachmentId": "att-a", "size": 10}},
            ]},
        ]
    }

    found = list(iter_attachments(payload))

    assert found == [{
        "part_id": "1.0", "filename": "a.png", "mime_type": "image/png", "size": 10, "attachment_id": "att-a",
    }]


def test_attachment_parts_do_not_become_the_body():
    msg = make_message("f1", body="real body", attachment="notes.txt")
    msg["payload"]["parts"].insert(0, {
        "partId": "9", "mimeType": "text/plain", "filename": "notes.txt", "body": {"data": b64url("file text")},
    })

    record = parse_message(msg)

    assert record.body_text == "real body"
    assert record.has_attachments is True


def test_decode_body_tolerates_bad_input():
    assert decode_body(b64url("abc")) == b"abc"
    assert decode_body(None) == b""
    assert decode_body("!!!") == b""
