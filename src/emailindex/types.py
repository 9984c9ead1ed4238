"""
Core data structures for the email index migration.

This module provides:
- Principal: A user or group record read from the principals table
- Claimant: One principal claiming an email address
- EmailIndex: Email address -> ordered list of claimants
- ValidationState: The two gates that must hold before migrating
- ErrorRecord: One row of the invalid-users report
- MappingEntry: One email -> principal id pair to persist
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

MISSING_EMAIL_MESSAGE = "missing email address"
INVALID_EMAIL_MESSAGE = "invalid email address"
DUPLICATE_EMAIL_MESSAGE = "duplicate email addresses detected"

CLAIMANT_SEPARATOR = " - "

REPORT_COLUMNS = ("principalId", "displayName", "email", "message")

USER_KIND = "u"
GROUP_KIND = "g"


def principal_kind(principal_id: str) -> str | None:
    """
    Return the resource kind encoded in a principal id.

    Ids look like ``u:tenant:id`` (users) or ``g:tenant:id`` (groups). Ids
    without a colon are classified by their first character.

    Example:
        >>> principal_kind("u:cam:abc")
        'u'
        >>> principal_kind("g:cam:staff")
        'g'
        >>> principal_kind("u1")
        'u'
    """
    if not principal_id:
        return None
    if ":" in principal_id:
        return principal_id.split(":", 1)[0]
    return principal_id[0]


def is_user_id(principal_id: str) -> bool:
    """Check whether a principal id denotes a user."""
    return principal_kind(principal_id) == USER_KIND


class Principal(BaseModel):
    """
    A user or group record from the principals table.

    Field names accept both the stored column names (``principalId``,
    ``displayName``) and their Python names.

    Example:
        >>> Principal.model_validate(
        ...     {"principalId": "u:cam:abc", "displayName": "Alice", "email": "a@x.com"}
        ... )
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    principal_id: str = Field(
        ...,
        alias="principalId",
        description="Unique identity; its prefix encodes the principal kind",
    )
    display_name: str = Field(
        default="",
        alias="displayName",
        description="Human readable name, may be empty",
    )
    email: str | None = Field(
        default=None,
        description="Email address as persisted, may be missing or malformed",
    )

    @field_validator("principal_id", mode="before")
    @classmethod
    def _none_principal_id(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("display_name", mode="before")
    @classmethod
    def _none_display_name(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_user(self) -> bool:
        """True if this principal is a user."""
        return is_user_id(self.principal_id)


@dataclass(frozen=True)
class Claimant:
    """A principal claiming an email address."""

    id: str
    display_name: str


@dataclass(frozen=True)
class MappingEntry:
    """One row of the email lookup table: email -> principal id."""

    email: str
    id: str


class EmailIndex:
    """
    Mapping from email address to the principals that use it.

    Claimants are kept in insertion (scan) order so duplicate reports list
    them in the order they were found. Keys are case-sensitive as received.

    Example:
        >>> index = EmailIndex()
        >>> index.add("a@x.com", Claimant("u1", "Alice"))
        >>> index.add("a@x.com", Claimant("u3", "Carol"))
        >>> [email for email, _ in index.duplicates()]
        ['a@x.com']
    """

    def __init__(self) -> None:
        self._claimants: dict[str, list[Claimant]] = {}

    def add(self, email: str, claimant: Claimant) -> None:
        """Record that ``claimant`` uses ``email``."""
        self._claimants.setdefault(email, []).append(claimant)

    def claimants(self, email: str) -> list[Claimant]:
        """Get the claimants of an email address (empty if unknown)."""
        return list(self._claimants.get(email, []))

    def items(self) -> Iterator[tuple[str, list[Claimant]]]:
        """Iterate over (email, claimants) pairs in first-seen order."""
        for email, claimants in self._claimants.items():
            yield email, list(claimants)

    def duplicates(self) -> Iterator[tuple[str, list[Claimant]]]:
        """Iterate over emails whose claimant count is not exactly one."""
        for email, claimants in self._claimants.items():
            if len(claimants) != 1:
                yield email, list(claimants)

    def to_mapping(self) -> list[MappingEntry]:
        """
        Build the migration target.

        Only emails with exactly one claimant are included, so the result
        holds at most one entry per email.
        """
        return [
            MappingEntry(email=email, id=claimants[0].id)
            for email, claimants in self._claimants.items()
            if len(claimants) == 1
        ]

    @property
    def claimant_count(self) -> int:
        """Total number of (email, principal) pairs recorded."""
        return sum(len(claimants) for claimants in self._claimants.values())

    def __len__(self) -> int:
        return len(self._claimants)

    def __contains__(self, email: object) -> bool:
        return email in self._claimants


@dataclass
class ValidationState:
    """
    Gates that must both hold before the email mapping is written.

    Attributes:
        emails_valid: False once any user has a missing or invalid email.
        emails_unique: None until the uniqueness check has run.
    """

    emails_valid: bool = True
    emails_unique: bool | None = None

    @property
    def passed(self) -> bool:
        """True only when every email is valid and unique."""
        return self.emails_valid and self.emails_unique is True


@dataclass(frozen=True)
class ErrorRecord:
    """
    One row of the invalid-users report.

    For duplicate emails ``principal_id`` and ``display_name`` hold every
    claimant joined with :data:`CLAIMANT_SEPARATOR`.
    """

    principal_id: str
    display_name: str
    email: str | None
    message: str

    def to_row(self) -> dict[str, str]:
        """Convert to a CSV row keyed by :data:`REPORT_COLUMNS`."""
        return {
            "principalId": self.principal_id,
            "displayName": self.display_name or "",
            "email": self.email or "",
            "message": self.message,
        }
