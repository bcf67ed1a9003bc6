"""IMAP parsing and the UNSEEN / mark-seen flow against a fake server."""

from email.message import EmailMessage

import imaplib
import pytest

from helpdesk.core.errors import ExternalProviderError
from helpdesk.db.enums import TicketChannel
from helpdesk.services.mailbox_providers.base import MailboxItem
from helpdesk.services.mailbox_providers.imap import (
    ImapMailboxProvider,
    parse_mime_message,
    thread_key_from_headers,
)


def _raw_message(**headers) -> bytes:
    msg = EmailMessage()
    msg["From"] = headers.get("from_", "Jane Doe <Jane@Acme.com>")
    msg["To"] = "help@support.example"
    msg["Cc"] = "boss@acme.com"
    msg["Subject"] = headers.get("subject", "Printer on fire")
    msg["Message-ID"] = headers.get("message_id", "<m2@acme.com>")
    msg["Date"] = "Mon, 02 Feb 2026 10:00:00 +0100"
    if "in_reply_to" in headers:
        msg["In-Reply-To"] = headers["in_reply_to"]
    if "references" in headers:
        msg["References"] = headers["references"]
    msg.set_content("It is smoking.")
    msg.add_alternative("<p>It is <b>smoking</b>.</p>", subtype="html")
    msg.add_attachment(
        b"\x00\x01data", maintype="application", subtype="octet-stream", filename="dump.bin"
    )
    return msg.as_bytes()


@pytest.mark.parametrize(
    "references,in_reply_to,message_id,expected",
    [
        ("<root@a> <mid@a>", "<mid@a>", "<me@a>", "<root@a>"),
        (None, "<parent@a>", "<me@a>", "<parent@a>"),
        (None, None, "<me@a>", "<me@a>"),
        (None, None, None, None),
    ],
)
def test_thread_key_from_headers(references, in_reply_to, message_id, expected):
    assert thread_key_from_headers(references, in_reply_to, message_id) == expected


def test_parse_mime_message():
    message = parse_mime_message(
        _raw_message(references="<root@acme.com> <m1@acme.com>", in_reply_to="<m1@acme.com>"),
        uid="42",
    )

    assert message.channel == TicketChannel.EMAIL_IMAP
    assert message.sender_email == "jane@acme.com"
    assert message.sender_name == "Jane Doe"
    assert message.subject == "Printer on fire"
    assert message.body_text.strip() == "It is smoking."
    assert "<b>smoking</b>" in message.body_html
    assert message.thread_key == "<root@acme.com>"
    assert message.provider_message_id == "<m2@acme.com>"
    assert message.to_emails == ["help@support.example"]
    assert message.cc_emails == ["boss@acme.com"]
    assert message.received_at.utcoffset().total_seconds() == 3600

    [attachment] = message.attachments
    assert attachment.filename == "dump.bin"
    assert attachment.mime_type == "application/octet-stream"
    assert attachment.size_bytes == 6
    assert attachment.provider_ref == "42:4"


def test_parse_without_message_id_uses_uid():
    msg = EmailMessage()
    msg["From"] = "jane@acme.com"
    msg["Subject"] = "hi"
    msg.set_content("hello")

    message = parse_mime_message(msg.as_bytes(), uid="9")

    assert message.provider_message_id == "imap-uid-9"
    assert message.thread_key is None
    assert message.attachments == []


class FakeImap:
    def __init__(self, messages: dict[str, bytes]):
        self.messages = messages
        self.seen: set[str] = set()
        self.logged_out = 0

    def login(self, user, password):
        return "OK", [b"logged in"]

    def select(self, folder):
        return "OK", [str(len(self.messages)).encode()]

    def uid(self, command, *args):
        if command == "SEARCH":
            unseen = [uid for uid in self.messages if uid not in self.seen]
            return "OK", [" ".join(unseen).encode()]
        if command == "FETCH":
            uid = args[0]
            if uid not in self.messages:
                return "NO", [None]
            return "OK", [(f"{uid} (BODY[] {{0}}".encode(), self.messages[uid]), b")"]
        if command == "STORE":
            self.seen.add(args[0])
            return "OK", [None]
        raise AssertionError(command)

    def logout(self):
        self.logged_out += 1
        return "BYE", [b""]


def _provider(server: FakeImap) -> ImapMailboxProvider:
    return ImapMailboxProvider(
        host="imap.example", port=993, user="u", password="p", folder="INBOX", connect=lambda: server
    )


def test_fetch_pending_and_mark_consumed():
    server = FakeImap({"1": _raw_message(), "2": _raw_message(message_id="<m3@acme.com>")})
    provider = _provider(server)

    items = provider.fetch_pending(limit=10)
    assert [item.ref for item in items] == ["1", "2"]
    assert items[1].message.provider_message_id == "<m3@acme.com>"
    # BODY.PEEK leaves the messages unseen until consumed.
    assert server.seen == set()

    provider.mark_consumed(items[0])

    assert [item.ref for item in provider.fetch_pending(limit=10)] == ["2"]
    assert server.logged_out == 3


def test_fetch_pending_honours_limit():
    server = FakeImap({str(uid): _raw_message() for uid in range(1, 6)})
    assert len(_provider(server).fetch_pending(limit=2)) == 2


def test_fetch_attachment_by_reference():
    provider = _provider(FakeImap({"42": _raw_message()}))

    content = provider.fetch_attachment("42:4")

    assert content.content == b"\x00\x01data"
    assert content.filename == "dump.bin"
    assert provider.fetch_attachment("43:4") is None
    assert provider.fetch_attachment("garbage") is None


def test_connection_failure_is_a_provider_error():
    def refuse():
        raise OSError("connection refused")

    provider = ImapMailboxProvider(connect=refuse)
    with pytest.raises(ExternalProviderError):
        provider.fetch_pending(limit=1)


def test_store_failure_is_a_provider_error():
    server = FakeImap({"1": _raw_message()})

    def failing_uid(command, *args):
        raise imaplib.IMAP4.error("STORE rejected")

    server.uid = failing_uid
    with pytest.raises(ExternalProviderError):
        _provider(server).mark_consumed(MailboxItem(ref="1", message=None))
