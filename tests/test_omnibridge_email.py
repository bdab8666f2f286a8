"""Tests for the email adapter and IMAP polling."""

import smtplib
from email.message import EmailMessage

import pytest

from app.models.omnibridge.enums import ChannelHealth, MessagePriority
from app.models.omnibridge.inbox import InboxMessage
from app.services import email as email_service
from app.services.omnibridge import email_polling
from app.services.omnibridge.channels import OutboundMessage, get_adapter
from app.services.omnibridge.channels.email import DEPTH_HEADER, is_auto_submitted
from app.services.omnibridge.errors import OmniBridgeConfigError, PermanentOutboundError, TransientOutboundError

# ============================================================================
# Helpers
# ============================================================================


def _raw_email(
    sender="Jane Doe <jane@customer.io>",
    subject="Printer on fire",
    body="Please help, the printer is on fire.",
    message_id="<msg-1@customer.io>",
    extra_headers=None,
    attachment=None,
) -> bytes:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = "support@example.com"
    msg["Subject"] = subject
    msg["Message-ID"] = message_id
    msg["Date"] = "Mon, 05 Jan 2026 10:30:00 +0100"
    for name, value in (extra_headers or {}).items():
        msg[name] = value
    msg.set_content(body)
    if attachment:
        msg.add_attachment(attachment, maintype="application", subtype="pdf", filename="invoice.pdf")
    return msg.as_bytes()


def _plain_email(sender: str, message_id: str) -> bytes:
    """Unfolded RFC 822 bytes, for headers too long to build with EmailMessage."""
    return (
        f"From: {sender}\r\n"
        "To: support@example.com\r\n"
        "Subject: Cheap pills\r\n"
        f"Message-ID: {message_id}\r\n"
        "Date: Mon, 05 Jan 2026 09:00:00 +0000\r\n"
        "\r\n"
        "Buy now\r\n"
    ).encode()


class FakeIMAP:
    def __init__(self, messages: dict[int, bytes]):
        self.messages = messages
        self.selected = None
        self.searches = []
        self.logged_out = False

    def select(self, mailbox):
        self.selected = mailbox
        return "OK", [str(len(self.messages)).encode()]

    def uid(self, command, *args):
        if command == "search":
            self.searches.append(args)
            criteria = args[1]
            uids = sorted(self.messages)
            if criteria.startswith("UID "):
                start = int(criteria.split()[1].split(":")[0])
                # IMAP answers "N:*" with the highest UID even when it is below N.
                uids = [uid for uid in uids if uid >= start] or uids[-1:]
            return "OK", [b" ".join(str(uid).encode() for uid in uids)]
        if command == "fetch":
            raw = self.messages[int(args[0])]
            return "OK", [(f"{args[0]} (RFC822 {{{len(raw)}}}".encode(), raw), b")"]
        raise AssertionError(f"unexpected IMAP command {command}")

    def logout(self):
        self.logged_out = True


class FakeSMTP:
    instances = []

    def __init__(self, host, port, use_ssl, timeout=None):
        self.host = host
        self.port = port
        self.sent = []
        self.started_tls = False
        self.login_args = None
        FakeSMTP.instances.append(self)

    def starttls(self):
        self.started_tls = True

    def login(self, username, password):
        self.login_args = (username, password)

    def sendmail(self, from_addr, to_addrs, message):
        self.sent.append((from_addr, to_addrs, message))
        return {}

    def quit(self):
        return None


@pytest.fixture()
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(email_service, "_create_smtp_client", FakeSMTP)
    return FakeSMTP


# ============================================================================
# Parsing
# ============================================================================


class TestEmailParsing:
    def test_parse_raw_basic_fields(self, email_channel):
        inbound = get_adapter("email").parse_raw(email_channel, _raw_email(), uid="7")
        assert inbound.from_address == "jane@customer.io"
        assert inbound.from_name == "Jane Doe"
        assert inbound.subject == "Printer on fire"
        assert inbound.body_text == "Please help, the printer is on fire."
        assert inbound.external_id == "msg-1@customer.io"
        assert inbound.thread_id == "msg-1@customer.io"
        assert inbound.received_at.isoformat() == "2026-01-05T09:30:00+00:00"
        assert inbound.metadata["uid"] == "7"
        assert inbound.metadata["auto_submitted"] is False

    def test_thread_follows_references_root(self, email_channel):
        raw = _raw_email(
            message_id="<reply-2@customer.io>",
            extra_headers={
                "In-Reply-To": "<reply-1@example.com>",
                "References": "<root@customer.io> <reply-1@example.com>",
            },
        )
        inbound = get_adapter("email").parse_raw(email_channel, raw)
        assert inbound.thread_id == "root@customer.io"

    def test_attachments_are_listed(self, email_channel):
        inbound = get_adapter("email").parse_raw(email_channel, _raw_email(attachment=b"%PDF-1.4 data"))
        assert inbound.attachments[0]["file_name"] == "invoice.pdf"
        assert inbound.attachments[0]["mime_type"] == "application/pdf"
        assert inbound.attachments[0]["file_size"] == len(b"%PDF-1.4 data")

    def test_automation_depth_header(self, email_channel):
        raw = _raw_email(extra_headers={DEPTH_HEADER: "2", "Auto-Submitted": "auto-replied"})
        inbound = get_adapter("email").parse_raw(email_channel, raw)
        assert inbound.metadata["automation_depth"] == 2
        assert inbound.metadata["auto_submitted"] is True

    def test_missing_sender_is_ignored(self, email_channel):
        assert get_adapter("email").parse_raw(email_channel, _raw_email(sender="")) is None

    @pytest.mark.parametrize(
        ("headers", "expected"),
        [
            ({"Auto-Submitted": "no"}, False),
            ({"Auto-Submitted": "auto-generated"}, True),
            ({"Precedence": "bulk"}, True),
            ({"X-Autoreply": "yes"}, True),
            ({"Subject": "hello"}, False),
        ],
    )
    def test_is_auto_submitted(self, headers, expected):
        assert is_auto_submitted(headers) is expected

    def test_self_addresses(self, email_channel):
        assert get_adapter("email").self_addresses(email_channel) == {"support@example.com"}


# ============================================================================
# SMTP send
# ============================================================================


class TestEmailSend:
    def test_send_threads_and_marks_auto_reply(self, db_session, email_channel, fake_smtp):
        outbound = OutboundMessage(
            recipient="jane@customer.io",
            subject="Re: Printer on fire",
            body="We are on our way.",
            options={
                "in_reply_to": "<msg-1@customer.io>",
                "references": "<msg-1@customer.io>",
                "auto_submitted": True,
                "automation_depth": 1,
            },
        )
        result = get_adapter("email").send(db_session, email_channel, outbound)

        smtp = fake_smtp.instances[0]
        assert smtp.host == "smtp.example.com"
        assert smtp.login_args == ("support@example.com", "secret")
        from_addr, to_addrs, message = smtp.sent[0]
        assert from_addr == "support@example.com"
        assert to_addrs == ["jane@customer.io"]
        assert "In-Reply-To: <msg-1@customer.io>" in message
        assert "Auto-Submitted: auto-replied" in message
        assert f"{DEPTH_HEADER}: 1" in message
        assert result.provider_message_id.startswith("<")

    def test_temporary_smtp_failure_is_transient(self, monkeypatch):
        def _boom(*args, **kwargs):
            raise smtplib.SMTPResponseException(451, b"try later")

        monkeypatch.setattr(email_service, "_create_smtp_client", _boom)
        with pytest.raises(TransientOutboundError):
            email_service.send_email_with_config({"host": "smtp"}, "a@b.io", "s", "b")

    def test_auth_failure_is_permanent(self):
        error = email_service.classify_smtp_error(smtplib.SMTPAuthenticationError(535, b"bad creds"))
        assert isinstance(error, PermanentOutboundError)

    def test_connection_refused_is_transient(self):
        assert isinstance(email_service.classify_smtp_error(ConnectionRefusedError()), TransientOutboundError)


# ============================================================================
# IMAP polling
# ============================================================================


class TestEmailPolling:
    def test_poll_processes_and_advances_cursor(self, db_session, email_channel, make_rule, monkeypatch):
        make_rule([{"action_type": "tag", "params": {"tags": ["polled"]}}])
        fake = FakeIMAP(
            {
                3: _raw_email(),
                4: _raw_email(sender="support@example.com", message_id="<echo@example.com>"),
                5: _raw_email(subject="URGENT outage", message_id="<msg-2@customer.io>"),
            }
        )
        monkeypatch.setattr(email_polling, "_connect", lambda config: fake)

        counts = email_polling.poll_email_channel(db_session, email_channel)

        assert counts == {"processed": 2, "duplicate": 0, "skipped": 1}
        assert fake.selected == "INBOX"
        assert fake.logged_out is True
        assert email_channel.metadata_[email_polling.CURSOR_KEY] == 5
        assert email_channel.health_status == ChannelHealth.healthy
        messages = db_session.query(InboxMessage).order_by(InboxMessage.subject).all()
        assert [m.subject for m in messages] == ["Printer on fire", "URGENT outage"]
        assert messages[1].priority == MessagePriority.urgent
        assert all(m.tags == ["polled"] and m.is_processed for m in messages)

    def test_second_poll_fetches_nothing_new(self, db_session, email_channel, monkeypatch):
        fake = FakeIMAP({3: _raw_email()})
        monkeypatch.setattr(email_polling, "_connect", lambda config: fake)
        email_polling.poll_email_channel(db_session, email_channel)

        counts = email_polling.poll_email_channel(db_session, email_channel)

        assert counts == {"processed": 0, "duplicate": 0, "skipped": 0}
        assert fake.searches[-1][1] == "UID 4:*"

    def test_rewound_cursor_yields_duplicates(self, db_session, email_channel, monkeypatch):
        fake = FakeIMAP({3: _raw_email()})
        monkeypatch.setattr(email_polling, "_connect", lambda config: fake)
        email_polling.poll_email_channel(db_session, email_channel)
        email_channel.metadata_ = {}
        db_session.commit()

        counts = email_polling.poll_email_channel(db_session, email_channel)

        assert counts["duplicate"] == 1
        assert db_session.query(InboxMessage).count() == 1

    def test_long_display_name_does_not_block_the_mailbox(self, db_session, email_channel, monkeypatch):
        fake = FakeIMAP(
            {
                3: _plain_email(f"{'X' * 300} <spam@spam.io>", "<spam@spam.io>"),
                4: _raw_email(),
            }
        )
        monkeypatch.setattr(email_polling, "_connect", lambda config: fake)

        counts = email_polling.poll_email_channel(db_session, email_channel)

        assert counts == {"processed": 2, "duplicate": 0, "skipped": 0}
        assert email_channel.metadata_[email_polling.CURSOR_KEY] == 4
        assert email_channel.health_status == ChannelHealth.healthy
        spam = db_session.query(InboxMessage).filter(InboxMessage.from_address == "spam@spam.io").one()
        assert len(spam.from_name) == 255

    def test_invalid_message_is_skipped_and_cursor_advances(self, db_session, email_channel, monkeypatch):
        fake = FakeIMAP(
            {
                3: _plain_email(f"{'a' * 300}@spam.io", "<huge@spam.io>"),
                4: _raw_email(),
            }
        )
        monkeypatch.setattr(email_polling, "_connect", lambda config: fake)

        counts = email_polling.poll_email_channel(db_session, email_channel)
        again = email_polling.poll_email_channel(db_session, email_channel)

        assert counts == {"processed": 1, "duplicate": 0, "skipped": 1}
        assert again == {"processed": 0, "duplicate": 0, "skipped": 0}
        assert email_channel.metadata_[email_polling.CURSOR_KEY] == 4
        assert [m.subject for m in db_session.query(InboxMessage).all()] == ["Printer on fire"]

    def test_connection_failure_degrades_health(self, db_session, email_channel, monkeypatch):
        def _refuse(config):
            raise OSError("connection refused")

        monkeypatch.setattr(email_polling, "_connect", _refuse)
        with pytest.raises(OSError):
            email_polling.poll_email_channel(db_session, email_channel)
        assert email_channel.error_count == 1
        assert email_channel.health_status == ChannelHealth.degraded
        assert "connection refused" in email_channel.last_error

    def test_poll_all_isolates_failures(self, db_session, email_channel, monkeypatch):
        def _down(config):
            raise OSError("down")

        monkeypatch.setattr(email_polling, "_connect", _down)
        results = email_polling.poll_all_email_channels(db_session)
        assert results[str(email_channel.id)] == {"error": "down"}

    def test_missing_imap_config(self, db_session, email_channel):
        email_channel.config = {"smtp": {"host": "smtp.example.com"}}
        db_session.commit()
        with pytest.raises(OmniBridgeConfigError, match="IMAP config"):
            email_polling.poll_email_channel(db_session, email_channel)
