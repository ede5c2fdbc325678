"""
Unit tests for outbound batch building and forwarding.
"""

import pytest

from sms_bridge.bridge.forwarder import Forwarder
from sms_bridge.bridge.transports import LoggingTransport
from sms_bridge.core.database import Member
from tests.factories import TeamTestFactory
from tests.fakes import RecordingTransport


@pytest.fixture
def team_members():
    return TeamTestFactory.create_members("+15551230001", "+15551230002", "+15551230003")


class TestBuildBatch:
    """Test addressee selection."""

    def test_excludes_sender(self, team_members):
        batch = Forwarder(RecordingTransport()).build_batch("hi", team_members, team_members[0], team_id=4)

        assert batch.sender is team_members[0]
        assert batch.addressee_phones == ["+15551230002", "+15551230003"]
        assert batch.team_id == 4

    def test_unknown_sender_reaches_everyone(self, team_members):
        sender = Member(phone_number="+15559990000")

        batch = Forwarder(RecordingTransport()).build_batch("hi", team_members, sender)

        assert len(batch.addressees) == 3

    def test_single_member_team_has_no_addressees(self, team_members):
        batch = Forwarder(RecordingTransport()).build_batch("hi", team_members[:1], team_members[0])

        assert batch.addressees == []


class TestForward:
    """Test handing batches to the transport."""

    def test_sends_one_batch(self, team_members):
        transport = RecordingTransport()

        batch = Forwarder(transport).forward("hello", team_members, team_members[1], team_id=1)

        assert transport.batches == [batch]
        assert batch.body == "hello"

    def test_empty_batch_still_sent(self, team_members):
        transport = RecordingTransport()

        Forwarder(transport).forward("hello", team_members[:1], team_members[0])

        assert len(transport.batches) == 1
        assert transport.batches[0].addressees == []

    def test_transport_failure_returns_none(self, team_members, caplog):
        with caplog.at_level("ERROR"):
            result = Forwarder(RecordingTransport(fail=True)).forward("hello", team_members, team_members[0])

        assert result is None
        assert "transport unavailable" in caplog.text

    def test_logging_transport(self, team_members, caplog):
        with caplog.at_level("INFO"):
            Forwarder(LoggingTransport()).forward("dry", team_members, team_members[0])

        assert "[dry run]" in caplog.text
        assert "+15551230002, +15551230003" in caplog.text
