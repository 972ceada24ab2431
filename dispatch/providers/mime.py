"""MIME message construction shared by both backends.

Layout produced by ``build_message``:

    multipart/mixed                 (only when attachments are present)
      multipart/alternative         (only when a text body is present)
        text/plain
        text/html
      <attachment>; base64, 76-character lines
      ...

Boundaries are derived from the current time plus a random suffix.
"""

import secrets
import time
from email import policy
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Optional, Sequence

from dispatch.domain.models import Attachment


def make_boundary(kind: str) -> str:
    """Return a boundary like ``----=_mixed_1730721600123_9f2c4a1b7d3e5f60``."""
    return f"----=_{kind}_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def build_message(
    sender: str,
    to: Sequence[str],
    subject: str,
    html_body: str,
    text_body: Optional[str] = None,
    cc: Optional[Sequence[str]] = None,
    reply_to: Optional[str] = None,
    attachments: Optional[Sequence[Attachment]] = None,
) -> EmailMessage:
    """Build a complete message ready for SMTP or a raw SES send.

    Bcc recipients are never written to the headers; pass them to the
    transport as envelope recipients instead.
    """
    message = EmailMessage(policy=policy.SMTP)
    message["From"] = sender
    message["To"] = ", ".join(to)
    if cc:
        message["Cc"] = ", ".join(cc)
    if reply_to:
        message["Reply-To"] = reply_to
    message["Subject"] = subject
    message["Date"] = formatdate(usegmt=True)
    message["Message-ID"] = make_msgid()

    if text_body:
        message.set_content(text_body)
        message.make_alternative(boundary=make_boundary("alt"))
        message.add_alternative(html_body, subtype="html")
    else:
        message.set_content(html_body, subtype="html")

    if attachments:
        message.make_mixed(boundary=make_boundary("mixed"))
        for attachment in attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            message.add_attachment(
                attachment.content,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )

    return message


def to_raw_bytes(message: EmailMessage) -> bytes:
    """Serialize with CRLF line endings as required on the wire."""
    return message.as_bytes(policy=policy.SMTP)
