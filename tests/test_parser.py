"""
Unit tests for gateway message parsing.
"""

import pytest

from sms_bridge.core.exceptions import MessageParseError
from sms_bridge.mailbox.parser import InboundMessageParser
from tests.factories import GatewayMessageFactory


@pytest.fixture
def parser():
    return InboundMessageParser()


class TestInboundMessageParser:
    """Test sender and body extraction."""

    def test_plain_text(self, parser):
        raw = GatewayMessageFactory.create_text(sender_phone="5551230001", body="Running late")

        message = parser.parse(raw, message_id=12)

        assert message.sender_phone == "5551230001"
        assert message.body == "Running late"
        assert message.message_id == 12

    def test_display_name_ignored(self, parser):
        raw = GatewayMessageFactory.create_text(sender_phone="5551230001", display_name="Alex Smith")

        assert parser.parse(raw).sender_phone == "5551230001"

    def test_accepts_str(self, parser):
        raw = GatewayMessageFactory.create_text(body="text").decode("utf-8")

        assert parser.parse(raw).body == "text"

    def test_multipart_prefers_plain_body(self, parser):
        raw = GatewayMessageFactory.create_multipart(body="See you there")

        assert parser.parse(raw).body == "See you there"

    def test_plain_attachment_fallback(self, parser):
        raw = GatewayMessageFactory.create_attachment_only(sender_phone="5551230002", body="On my way")

        message = parser.parse(raw)

        assert message.sender_phone == "5551230002"
        assert message.body == "On my way"

    def test_non_ascii_body(self, parser):
        raw = GatewayMessageFactory.create_text(body="Café at 5? 👍")

        assert parser.parse(raw).body == "Café at 5? 👍"

    def test_unknown_charset_falls_back_to_utf8(self, parser):
        raw = GatewayMessageFactory.create_bad_charset(sender_phone="5551230001", body="Gate code is 4412")

        message = parser.parse(raw)

        assert message.sender_phone == "5551230001"
        assert message.body == "Gate code is 4412"

    def test_missing_text_part_raises(self, parser):
        with pytest.raises(MessageParseError):
            parser.parse(GatewayMessageFactory.create_html_only())

    def test_missing_from_raises(self, parser):
        raw = b"To: team@example.com\r\nSubject: hi\r\n\r\nbody\r\n"

        with pytest.raises(MessageParseError):
            parser.parse(raw)
