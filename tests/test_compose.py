import base64
import email
from email import policy

import pytest

from accountsync.compose import (
    FORWARD_MARKER,
    build_forward,
    build_reply,
    compose,
    encode_transport,
    prefix_subject,
    render,
    send_body,
    wrap_base64,
)
from accountsync.connectors.gmail_parser import parse_message
from accountsync.models.compose import Attachment, ComposedMessage
from tests.fakes import make_message


def _parse(raw: bytes):
    return email.message_from_bytes(raw, policy=policy.default)


@pytest.fixture
def original():
    return parse_message(make_message(
        "orig",
        subject="Quarterly numbers",
        sender="Bob Smith <bob@example.com>",
        to="me@example.com, carol@example.com",
        body="See attached numbers.",
    ))


def test_plain_message_headers_and_body():
    raw = render(ComposedMessage(to="alice@example.com", subject="Hi", body_text="Hello there"))

    assert b"\r\n" in raw
    msg = _parse(raw)
    assert msg["To"] == "alice@example.com"
    assert msg["Subject"] == "Hi"
    assert msg["MIME-Version"] == "1.0"
    assert msg.get_content_type() == "text/plain"
    assert msg.get_content().strip() == "Hello there"


def test_html_message_is_multipart_alternative():
    raw = render(
        ComposedMessage(to="a@example.com", subject="Hi", body_text="plain", body_html="<b>rich</b>"),
        boundary="test-boundary",
    )

    msg = _parse(raw)
    assert msg.get_content_type() == "multipart/alternative"
    assert msg.get_boundary() == "test-boundary"
    parts = list(msg.iter_parts())
    assert [p.get_content_type() for p in parts] == ["text/plain", "text/html"]
    assert parts[1].get_content().strip() == "<b>rich</b>"


def test_attachments_make_multipart_mixed():
    payload = bytes(range(256)) * 3
    attachment = Attachment(
        filename="data.bin",
        mime_type="application/octet-stream",
        content=base64.b64encode(payload).decode("ascii"),
    )
    raw = render(ComposedMessage(to="a@example.com", subject="Files", body_text="see file", attachments=[attachment]))

    msg = _parse(raw)
    assert msg.get_content_type() == "multipart/mixed"
    body, attached = list(msg.iter_parts())
    assert body.get_content().strip() == "see file"
    assert attached.get_filename() == "data.bin"
    assert attached.get_content() == payload

    # the encoded attachment body on the wire is folded at 76 columns
    text = raw.decode("ascii")
    after_headers = text.split('filename="data.bin"', 1)[1].split("\r\n\r\n", 1)[1]
    encoded_lines = [line for line in after_headers.split("\r\n--", 1)[0].split("\r\n") if line]
    assert "".join(encoded_lines) == attachment.content
    assert max(len(line) for line in encoded_lines) == 76
    assert [len(line) for line in encoded_lines[:-1]] == [76] * (len(encoded_lines) - 1)


def test_base64_is_wrapped_at_76_columns():
    wrapped = wrap_base64("A" * 200)
    lines = wrapped.split("\n")
    assert [len(line) for line in lines] == [76, 76, 48]
    # already wrapped input is re-flowed
    assert wrap_base64("AAAA\nBBBB\r\n") == "AAAABBBB"


def test_non_ascii_body_survives():
    raw = render(ComposedMessage(to="a@example.com", subject="Café", body_text="naïve résumé"))
    msg = _parse(raw)
    assert msg["Subject"] == "Café"
    assert msg.get_content().strip() == "naïve résumé"


def test_reply_threads_under_original(original):
    reply = build_reply(original, "Thanks!")

    assert reply.to == "bob@example.com"
    assert reply.subject == "Re: Quarterly numbers"
    assert reply.in_reply_to == "<orig@mail.example.com>"
    assert reply.references == "<orig@mail.example.com>"
    assert reply.thread_id == "thread-orig"


def test_reply_appends_to_existing_references():
    record = parse_message(make_message(
        "second",
        subject="Re: Plans",
        extra_headers={"References": "<first@mail.example.com>"},
    ))
    reply = build_reply(record, "ok")

    assert reply.subject == "Re: Plans"
    assert reply.references == "<first@mail.example.com> <second@mail.example.com>"


def test_subject_prefix_is_not_doubled():
    assert prefix_subject("Re: x", "Re: ") == "Re: x"
    assert prefix_subject("Fwd: x", "Fwd: ") == "Fwd: x"
    assert prefix_subject("x", "Fwd: ") == "Fwd: x"
    assert prefix_subject("", "Re: ") == "Re: "


def test_forward_quotes_original(original):
    forward = build_forward(original, "dave@example.com", "FYI")

    assert forward.to == "dave@example.com"
    assert forward.subject == "Fwd: Quarterly numbers"
    lines = forward.body_text.split("\n")
    assert lines[0] == "FYI"
    assert FORWARD_MARKER in lines
    assert "From: Bob Smith <bob@example.com>" in lines
    assert "Subject: Quarterly numbers" in lines
    assert "To: me@example.com, carol@example.com" in lines
    assert lines[-1] == "See attached numbers."


def test_compose_dispatch(original):
    raw = compose("reply", {"original": original, "body": "Thanks"})
    assert _parse(raw)["In-Reply-To"] == "<orig@mail.example.com>"

    with pytest.raises(ValueError):
        compose("draft", {})


def test_transport_encoding_is_unpadded_base64url():
    encoded = encode_transport(b"\xfb\xff subject?")
    assert "=" not in encoded
    assert "+" not in encoded and "/" not in encoded
    assert base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)) == b"\xfb\xff subject?"


def test_send_body_carries_thread_id(original):
    body = send_body(build_reply(original, "hi"))
    assert body["threadId"] == "thread-orig"
    assert "threadId" not in send_body(ComposedMessage(to="a@example.com"))
