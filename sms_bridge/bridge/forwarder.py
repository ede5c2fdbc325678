"""
Text Forwarder

Fans an inbound text out to the rest of the team: one outbound batch per
inbound message, addressed to every recipient except the sender.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..core.database import Member
from ..core.exceptions import ForwardError
from ..interfaces import SendTransport


logger = logging.getLogger(__name__)


@dataclass
class OutboundBatch:
    """One text to be sent to a set of addressees under one sender identity."""

    sender: Member
    body: str
    addressees: List[Member] = field(default_factory=list)
    team_id: Optional[int] = None

    @property
    def addressee_phones(self) -> List[str]:
        return [m.phone_number for m in self.addressees]


class Forwarder:
    """
    Builds outbound batches and hands them to the send transport.

    Transport failures are logged here and never propagate into the
    polling cycle.
    """

    def __init__(self, transport: SendTransport):
        """
        Initialize forwarder.

        Args:
            transport: Outbound text transport
        """
        self.transport = transport

    def build_batch(
        self, text: str, recipients: Sequence[Member], sender: Member, team_id: Optional[int] = None
    ) -> OutboundBatch:
        """Batch addressed to every recipient whose phone number differs from the sender's."""
        addressees = [r for r in recipients if r.phone_number != sender.phone_number]
        return OutboundBatch(sender=sender, body=text, addressees=addressees, team_id=team_id)

    def forward(
        self, text: str, recipients: Sequence[Member], sender: Member, team_id: Optional[int] = None
    ) -> Optional[OutboundBatch]:
        """
        Forward a text to a team.

        Args:
            text: Body of the text
            recipients: Team members with phone numbers
            sender: Who sent the text (may be a phone-number-only identity)
            team_id: Team the text belongs to

        Returns:
            The batch handed to the transport, or None if sending failed
        """
        batch = self.build_batch(text, recipients, sender, team_id)

        if not batch.addressees:
            logger.info(f"No one to forward text from {sender.phone_number} to (team {team_id})")

        try:
            self.transport.send(batch)
        except ForwardError as e:
            logger.error(f"Failed to forward text from {sender.phone_number} (team {team_id}): {e}")
            return None

        logger.info(
            f"Forwarded text from {sender.phone_number} to {len(batch.addressees)} "
            f"team member(s) (team {team_id})"
        )
        return batch
