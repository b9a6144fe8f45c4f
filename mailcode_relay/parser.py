"""Turn a :class:`FetchedMessage` into an :class:`InboundMessage`.

Only the plain-text body is recovered; HTML and attachments are ignored.
"""

from __future__ import annotations

import base64
import binascii
import email
import email.message
import email.policy
from collections.abc import Mapping

from .errors import BodyDecodeError
from .models import FetchedMessage, InboundMessage

NO_SUBJECT = "(no subject)"
NO_SENDER = "(unknown sender)"
NO_DATE = "(no date)"


def header_value(headers: Mapping[str, str], name: str, default: str = "") -> str:
    """Case-insensitive header lookup; blank values count as missing."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted and value:
            return value
    return default


def decode_base64url(data: str) -> str:
    """Decode a Gmail ``body.data`` field to text."""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        return raw.decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        # UnicodeDecodeError is a ValueError
        raise BodyDecodeError(f"invalid base64url body: {exc}") from exc


def plain_text_from_rfc822(raw_bytes: bytes) -> str:
    """Return the first non-attachment ``text/plain`` part, or ``""``."""
    try:
        msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)
        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            if "attachment" in str(part.get("Content-Disposition", "")):
                continue
            if part.get_content_type() != "text/plain":
                continue
            payload = part.get_content()
            if isinstance(payload, str):
                return payload
    except (LookupError, ValueError) as exc:
        # unknown charset or broken transfer encoding
        raise BodyDecodeError(f"undecodable RFC 822 body: {exc}") from exc
    return ""


def decode_body(fetched: FetchedMessage) -> str:
    if not fetched.raw_body:
        return ""
    if fetched.body_encoding == "rfc822":
        raw = fetched.raw_body
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        return plain_text_from_rfc822(raw)
    raw = fetched.raw_body
    if isinstance(raw, bytes):
        raw = raw.decode("ascii", errors="replace")
    return decode_base64url(raw)


def to_inbound(fetched: FetchedMessage) -> InboundMessage:
    """Decode body and pull subject/sender/date, applying placeholders.

    Raises :class:`BodyDecodeError` when the body is malformed.
    """
    return InboundMessage(
        message_id=fetched.message_id,
        subject=header_value(fetched.headers, "Subject", NO_SUBJECT),
        sender=header_value(fetched.headers, "From", NO_SENDER),
        timestamp=header_value(fetched.headers, "Date", NO_DATE),
        body=decode_body(fetched),
    )
