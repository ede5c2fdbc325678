"""
Custom exceptions for the SMS-Email Bridge.
"""


class SmsBridgeException(Exception):
    """Base exception for all custom exceptions."""

    pass


# ============================================================================
# Mailbox Exceptions
# ============================================================================


class MailboxError(SmsBridgeException):
    """Error communicating with the IMAP server."""

    pass


class MailboxConnectionError(MailboxError):
    """Could not connect or authenticate to the IMAP server."""

    pass


class MailboxSearchError(MailboxError):
    """IMAP SEARCH command failed."""

    pass


class MailboxFetchError(MailboxError):
    """IMAP FETCH command failed."""

    pass


class MessageParseError(SmsBridgeException):
    """Fetched message could not be parsed into sender and body."""

    pass


# ============================================================================
# Distribution Exceptions
# ============================================================================


class ForwardError(SmsBridgeException):
    """Failed to hand an outbound batch to the send transport."""

    pass


# ============================================================================
# Database Exceptions
# ============================================================================


class DatabaseError(SmsBridgeException):
    """Database operation failed."""

    pass


class TeamNotFoundError(DatabaseError):
    """Team not found in database."""

    pass


class MemberNotFoundError(DatabaseError):
    """Member not found in database."""

    pass


# ============================================================================
# Job Exceptions
# ============================================================================


class JobRunnerError(SmsBridgeException):
    """Scheduling or claiming a job failed."""

    pass
