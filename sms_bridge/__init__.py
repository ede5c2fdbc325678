"""
SMS-Email Bridge

Forwards texts that arrive in a team's SMS-to-email gateway mailbox to the
other members of the team, polling each mailbox on an adaptive back-off
schedule.
"""

__version__ = "0.1.0"
