"""
IMAP search query composition.

Queries are small trees of criteria (header contains text, unseen flag,
AND, OR) that render to the nested criteria lists accepted by
``IMAPClient.search``. Nested lists are sent parenthesized, and IMAP's
``OR`` is binary, so an n-way OR is rendered right-nested:

    OR (FROM "+1111" UNSEEN) (OR (FROM "+2222" UNSEEN) (FROM "+3333" UNSEEN))
"""

from dataclasses import dataclass
from typing import Iterable, List, Tuple


class SearchQuery:
    """Base class for search criteria."""

    def to_criteria(self) -> list:
        raise NotImplementedError

    def and_(self, other: "SearchQuery") -> "AndQuery":
        return AndQuery((self, other))

    def __str__(self) -> str:
        return _render(self.to_criteria())


@dataclass(frozen=True)
class HeaderContains(SearchQuery):
    """Header contains the given text (case-insensitive substring, per RFC 3501)."""

    header: str
    text: str

    def to_criteria(self) -> list:
        # FROM/TO/CC/BCC/SUBJECT have dedicated search keys
        if self.header.upper() in ("FROM", "TO", "CC", "BCC", "SUBJECT"):
            return [self.header.upper(), self.text]
        return ["HEADER", self.header, self.text]


@dataclass(frozen=True)
class Unseen(SearchQuery):
    """Message does not have the \\Seen flag."""

    def to_criteria(self) -> list:
        return ["UNSEEN"]


@dataclass(frozen=True)
class AndQuery(SearchQuery):
    """All parts match. IMAP ANDs adjacent keys, so parts are concatenated."""

    parts: Tuple[SearchQuery, ...]

    def to_criteria(self) -> list:
        criteria = []
        for part in self.parts:
            criteria.extend(part.to_criteria())
        return criteria


@dataclass(frozen=True)
class OrQuery(SearchQuery):
    """Any part matches."""

    parts: Tuple[SearchQuery, ...]

    def to_criteria(self) -> list:
        if not self.parts:
            raise ValueError("OR query needs at least one part")
        if len(self.parts) == 1:
            return self.parts[0].to_criteria()

        head, rest = self.parts[0], self.parts[1:]
        tail = rest[0] if len(rest) == 1 else OrQuery(rest)
        return ["OR", head.to_criteria(), tail.to_criteria()]


def build_unseen_from_query(phone_numbers: Iterable[str]) -> OrQuery:
    """
    Match unread messages from any of the given phone numbers.

    Args:
        phone_numbers: Sender numbers to look for in the From header

    Returns:
        OR of (From contains number AND unseen) for each number

    Raises:
        ValueError: If no phone numbers are given
    """
    queries = [HeaderContains("From", number).and_(Unseen()) for number in phone_numbers]
    if not queries:
        raise ValueError("At least one phone number is required")
    return OrQuery(tuple(queries))


def _render(criteria: List) -> str:
    """Render criteria as IMAP search text (for logging)."""
    tokens = []
    for item in criteria:
        if isinstance(item, list):
            tokens.append(f"({_render(item)})")
        elif item.isalpha() and item.isupper():
            tokens.append(item)
        else:
            tokens.append(f'"{item}"')
    return " ".join(tokens)
