"""Tests for MIME message construction."""

import re

from dispatch.domain.models import Attachment, format_sender
from dispatch.providers.base import build_test_email
from dispatch.providers.mime import build_message, make_boundary, to_raw_bytes


def _message(**overrides):
    values = {
        "sender": "Acme <noreply@example.com>",
        "to": ["alice@example.com", "bob@example.com"],
        "subject": "Ticket update",
        "html_body": "<p>Hello</p>",
    }
    values.update(overrides)
    return build_message(**values)


class TestBuildMessage:
    """Tests for build_message."""

    def test_headers(self):
        """Test standard headers are set and recipients joined."""
        message = _message(cc=["cc@example.com"], reply_to="support@example.com")

        assert message["From"] == "Acme <noreply@example.com>"
        assert message["To"] == "alice@example.com, bob@example.com"
        assert message["Cc"] == "cc@example.com"
        assert message["Reply-To"] == "support@example.com"
        assert message["Message-ID"]
        assert message["Date"]

    def test_html_only_is_single_part(self):
        """Test a message without text body is plain text/html."""
        message = _message()
        assert message.get_content_type() == "text/html"

    def test_text_and_html_are_alternatives(self):
        """Test a text body produces multipart/alternative with text first."""
        message = _message(text_body="Hello")

        assert message.get_content_type() == "multipart/alternative"
        parts = [part.get_content_type() for part in message.iter_parts()]
        assert parts == ["text/plain", "text/html"]

    def test_attachments_wrap_in_mixed(self):
        """Test attachments produce multipart/mixed around the body."""
        message = _message(
            text_body="Hello",
            attachments=[Attachment(filename="log.txt", content=b"x" * 200, content_type="text/plain")],
        )

        assert message.get_content_type() == "multipart/mixed"
        parts = list(message.iter_parts())
        assert parts[0].get_content_type() == "multipart/alternative"
        assert parts[1].get_filename() == "log.txt"
        assert parts[1]["Content-Transfer-Encoding"] == "base64"

    def test_raw_bytes_use_crlf(self):
        """Test serialization uses CRLF line endings."""
        raw = to_raw_bytes(_message(text_body="Hello"))
        assert b"\r\n" in raw
        assert b"\n" not in raw.replace(b"\r\n", b"")

    def test_boundary_format(self):
        """Test boundaries carry the kind, a millisecond timestamp and a random suffix."""
        boundary = make_boundary("mixed")
        assert re.fullmatch(r"----=_mixed_\d{13}_[0-9a-f]{16}", boundary)
        assert make_boundary("mixed") != boundary


class TestSenderHelpers:
    """Tests for format_sender and the connection test email."""

    def test_format_sender(self):
        """Test the display name is optional."""
        assert format_sender("a@example.com", "Acme") == "Acme <a@example.com>"
        assert format_sender("a@example.com", "") == "a@example.com"

    def test_test_email_mentions_provider(self):
        """Test the verification email names the provider and sender."""
        subject, html_body, text_body = build_test_email("Custom SMTP", "noreply@example.com")
        assert subject == "Email Configuration Test"
        assert "Custom SMTP" in html_body and "Custom SMTP" in text_body
        assert "noreply@example.com" in text_body
