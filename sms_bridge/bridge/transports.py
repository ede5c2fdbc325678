"""
Send Transports

Where outbound batches go once the forwarder has built them:
- OutboxTransport: rows in the outbound_messages table, one per batch,
  for the external SMS sender to deliver
- LoggingTransport: log only (dry runs)
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..core.database import DatabaseManager, OutboundMessage
from ..core.exceptions import ForwardError
from ..interfaces import SendTransport
from .forwarder import OutboundBatch


logger = logging.getLogger(__name__)


class OutboxTransport(SendTransport):
    """Stores each batch in the database outbox."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def send(self, batch: OutboundBatch) -> None:
        """
        Queue a batch in the outbox.

        Raises:
            ForwardError: If the row could not be written
        """
        session = self.db.get_session()
        try:
            message = OutboundMessage(
                team_id=batch.team_id,
                sender_phone=batch.sender.phone_number,
                sender_member_id=batch.sender.id,
                body=batch.body,
                addressee_phones=batch.addressee_phones,
            )
            session.add(message)
            session.commit()
            logger.debug(f"Queued outbound message {message.id} for {len(batch.addressees)} addressee(s)")
        except SQLAlchemyError as e:
            session.rollback()
            raise ForwardError(f"Could not queue outbound message: {e}") from e
        finally:
            session.close()


class LoggingTransport(SendTransport):
    """Logs batches instead of sending them."""

    def send(self, batch: OutboundBatch) -> None:
        logger.info(
            f"[dry run] Text from {batch.sender.phone_number} to "
            f"{', '.join(batch.addressee_phones) or 'nobody'}: {batch.body[:160]}"
        )
