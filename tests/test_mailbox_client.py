"""
Unit tests for the IMAP mailbox client with a mocked IMAPClient.
"""

import pytest
from unittest.mock import patch

from imapclient.exceptions import IMAPClientError

from sms_bridge.core.exceptions import MailboxConnectionError, MailboxFetchError, MailboxSearchError
from sms_bridge.mailbox.client import ImapMailboxClient, ImapSettings
from sms_bridge.mailbox.query import build_unseen_from_query
from tests.factories import TeamTestFactory


SETTINGS = ImapSettings(host="imap.example.com", username="texts@example.com", password="secret")


@pytest.fixture
def imap():
    """Patched IMAPClient class; ``imap.return_value`` is the connection."""
    with patch("sms_bridge.mailbox.client.IMAPClient") as cls:
        yield cls


@pytest.fixture
def connected(imap):
    client = ImapMailboxClient(timeout=5)
    assert client.connect(SETTINGS).ok
    return client


class TestImapSettings:
    """Test building settings from team rows."""

    def test_from_team(self):
        team = TeamTestFactory.create_team(imap_connection_security="tls", imap_port=None)

        settings = ImapSettings.from_team(team)

        assert settings.host == "imap.example.com"
        assert settings.security == "tls"
        assert settings.port == 143

    def test_unconfigured_team(self):
        assert ImapSettings.from_team(TeamTestFactory.create_team(configured=False)) is None


class TestConnect:
    """Test connection and login."""

    def test_ssl_login(self, imap):
        assert ImapMailboxClient(timeout=5).connect(SETTINGS).ok

        imap.assert_called_once_with("imap.example.com", port=993, use_uid=True, ssl=True, timeout=5)
        imap.return_value.login.assert_called_once_with("texts@example.com", "secret")
        imap.return_value.starttls.assert_not_called()

    def test_starttls(self, imap):
        settings = ImapSettings(host="imap.example.com", username="u", password="p", port=143, security="tls")

        assert ImapMailboxClient().connect(settings).ok

        assert imap.call_args.kwargs["ssl"] is False
        imap.return_value.starttls.assert_called_once()

    def test_login_failure(self, imap):
        imap.return_value.login.side_effect = IMAPClientError("LOGIN failed")

        outcome = ImapMailboxClient().connect(SETTINGS)

        assert not outcome.ok
        assert isinstance(outcome.error, MailboxConnectionError)

    def test_network_failure(self, imap):
        imap.side_effect = OSError("connection refused")

        outcome = ImapMailboxClient().connect(SETTINGS)

        assert not outcome.ok
        assert "connection refused" in str(outcome.error)

    def test_unknown_security_mode(self, imap):
        settings = ImapSettings(host="h", username="u", password="p", security="carrier")

        assert not ImapMailboxClient().connect(settings).ok
        imap.assert_not_called()


class TestSearchAndFetch:
    """Test search and fetch against a connected client."""

    def test_search_sends_criteria(self, imap, connected):
        imap.return_value.search.return_value = [9, 4]
        query = build_unseen_from_query(["5551230001", "5551230002"])

        outcome = connected.search("INBOX", query)

        assert outcome.ok
        assert outcome.value.count == 2
        assert outcome.value.match_ids == [4, 9]
        imap.return_value.select_folder.assert_called_once_with("INBOX")
        imap.return_value.search.assert_called_once_with(query.to_criteria())

    def test_search_failure(self, imap, connected):
        imap.return_value.search.side_effect = IMAPClientError("BAD")

        outcome = connected.search("INBOX", build_unseen_from_query(["1"]))

        assert isinstance(outcome.error, MailboxSearchError)

    def test_search_when_not_connected(self, imap):
        outcome = ImapMailboxClient().search("INBOX", build_unseen_from_query(["1"]))

        assert not outcome.ok

    def test_fetch_in_requested_order(self, imap, connected):
        imap.return_value.fetch.return_value = {
            9: {b"RFC822": b"second", b"SEQ": 2},
            4: {b"RFC822": b"first", b"SEQ": 1},
        }

        outcome = connected.fetch("INBOX", [4, 9])

        assert [m.full_text for m in outcome.value] == [b"first", b"second"]
        assert [m.message_id for m in outcome.value] == [4, 9]
        imap.return_value.fetch.assert_called_once_with([4, 9], ["RFC822"])

    def test_fetch_skips_expunged(self, imap, connected):
        imap.return_value.fetch.return_value = {4: {b"RFC822": b"first"}}

        outcome = connected.fetch("INBOX", [4, 9])

        assert [m.message_id for m in outcome.value] == [4]

    def test_fetch_failure(self, imap, connected):
        imap.return_value.fetch.side_effect = OSError("reset")

        outcome = connected.fetch("INBOX", [4])

        assert isinstance(outcome.error, MailboxFetchError)

    def test_folder_selected_once(self, imap, connected):
        imap.return_value.search.return_value = [1]
        imap.return_value.fetch.return_value = {1: {b"RFC822": b"x"}}

        connected.search("INBOX", build_unseen_from_query(["1"]))
        connected.fetch("INBOX", [1])

        imap.return_value.select_folder.assert_called_once()


class TestLogout:
    """Test closing the connection."""

    def test_logout(self, imap, connected):
        connected.logout()
        connected.logout()

        imap.return_value.logout.assert_called_once()

    def test_logout_errors_swallowed(self, imap, connected):
        imap.return_value.logout.side_effect = IMAPClientError("BYE")

        connected.logout()

    def test_logout_without_connect(self):
        ImapMailboxClient().logout()
