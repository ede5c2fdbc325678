"""
Inbound Message Parser

Turns a full RFC 822 message relayed by a carrier's SMS-to-email gateway
into the sender's phone number and the plain-text body of the text.

Gateways address mail from ``<number>@<gateway domain>``, so the sender's
phone number is the mailbox (local part) of the first From address.
"""

import email
import logging
from dataclasses import dataclass
from email import policy
from email.message import EmailMessage
from email.utils import parseaddr
from typing import Optional

from ..core.exceptions import MessageParseError


logger = logging.getLogger(__name__)


@dataclass
class InboundMessage:
    """A text received through the gateway mailbox."""

    sender_phone: str
    body: str
    message_id: Optional[int] = None  # mailbox UID, only used to address the fetch


class InboundMessageParser:
    """Extracts sender phone number and body text from raw messages."""

    def parse(self, raw: bytes, message_id: Optional[int] = None) -> InboundMessage:
        """
        Parse a raw message.

        Args:
            raw: Full message text as returned by FETCH RFC822
            message_id: Mailbox UID the message was fetched with

        Returns:
            InboundMessage

        Raises:
            MessageParseError: If the From mailbox or a text body is missing
        """
        if isinstance(raw, str):
            raw = raw.encode("utf-8")

        message = email.message_from_bytes(raw, policy=policy.default)

        sender_phone = self.extract_sender_phone(message)
        if not sender_phone:
            raise MessageParseError(f"Message {message_id} has no usable From address")

        body = self.extract_body(message)
        if body is None:
            raise MessageParseError(f"Message {message_id} from {sender_phone} has no text/plain part")

        logger.debug(f"Parsed message {message_id} from {sender_phone} ({len(body)} chars)")

        return InboundMessage(sender_phone=sender_phone, body=body, message_id=message_id)

    def extract_sender_phone(self, message: EmailMessage) -> str:
        """Mailbox part of the first From address, e.g. '5551234567' for 5551234567@vtext.com."""
        _, address = parseaddr(str(message.get("From", "")))
        return address.split("@", 1)[0].strip()

    def extract_body(self, message: EmailMessage) -> Optional[str]:
        """
        Plain-text body of the message.

        Prefers the MIME body part; some gateways (Verizon, for one) deliver
        the text as a text/plain attachment instead, so any text/plain part
        is accepted as a fallback.
        """
        part = message.get_body(preferencelist=("plain",))
        if part is None:
            part = next((p for p in message.walk() if p.get_content_type() == "text/plain"), None)
        if part is None:
            return None

        try:
            text = part.get_content()
        except (LookupError, UnicodeError) as e:
            # Unknown or wrong charset label: keep the text rather than drop the message
            logger.warning(f"Could not decode text part ({e}), falling back to UTF-8 with replacement")
            payload = part.get_payload(decode=True)
            if payload is None:
                raise MessageParseError(f"Undecodable text/plain part: {e}") from e
            text = payload.decode("utf-8", "replace")

        return text.strip()
