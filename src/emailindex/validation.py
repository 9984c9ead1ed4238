"""
Validation of persisted email addresses.

Validation runs in two passes. The RecordValidator checks every scanned page
for missing or malformed addresses and accumulates the EmailIndex. Only
after the whole scan has completed can the UniquenessChecker tell whether an
address is claimed by more than one user.

Neither class raises for data-quality problems. Each problem is written to
the reporter and recorded in the ValidationState, which gates the migration.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from emailindex.emails import EmailPredicate, is_valid_email
from emailindex.reporting import Reporter
from emailindex.types import (
    CLAIMANT_SEPARATOR,
    DUPLICATE_EMAIL_MESSAGE,
    INVALID_EMAIL_MESSAGE,
    MISSING_EMAIL_MESSAGE,
    Claimant,
    EmailIndex,
    Principal,
    ValidationState,
    is_user_id,
)

logger = logging.getLogger(__name__)


@dataclass
class PageStats:
    """
    Counters for validated principals.

    Attributes:
        principals_seen: Principals of any kind examined.
        users_seen: User principals examined.
        missing: Users without an email address.
        invalid: Users with a malformed email address.
        indexed: Users added to the email index.
    """

    principals_seen: int = 0
    users_seen: int = 0
    missing: int = 0
    invalid: int = 0
    indexed: int = 0

    def add(self, other: PageStats) -> None:
        """Accumulate another set of counters into this one."""
        self.principals_seen += other.principals_seen
        self.users_seen += other.users_seen
        self.missing += other.missing
        self.invalid += other.invalid
        self.indexed += other.indexed


class RecordValidator:
    """
    Checks pages of principals and builds the email index.

    Groups and other non-user principals are skipped. A user without an
    email, or with one rejected by the email predicate, marks the state
    invalid and is reported. Every other user is added to the index under
    its email address as received.

    Example:
        >>> validator = RecordValidator(EmailIndex(), ValidationState(), reporter)
        >>> async for page in source.iter_pages(fields, page_size=30):
        ...     validator.validate(page)
    """

    def __init__(
        self,
        index: EmailIndex,
        state: ValidationState,
        reporter: Reporter,
        *,
        email_predicate: EmailPredicate = is_valid_email,
        user_predicate: Callable[[str], bool] = is_user_id,
    ) -> None:
        self._index = index
        self._state = state
        self._reporter = reporter
        self._is_valid_email = email_predicate
        self._is_user = user_predicate
        self._totals = PageStats()

    def validate(self, page: Iterable[Principal]) -> PageStats:
        """
        Validate one page of principals.

        Args:
            page: Principals from one scanned page

        Returns:
            Counters for this page (also added to :attr:`totals`)
        """
        stats = PageStats()
        for principal in page:
            stats.principals_seen += 1
            if not self._is_user(principal.principal_id):
                continue
            stats.users_seen += 1

            email = principal.email
            if not email:
                self._state.emails_valid = False
                stats.missing += 1
                self._reporter.report(
                    principal.principal_id,
                    principal.display_name,
                    email,
                    MISSING_EMAIL_MESSAGE,
                )
                continue

            if not self._is_valid_email(email):
                self._state.emails_valid = False
                stats.invalid += 1
                self._reporter.report(
                    principal.principal_id,
                    principal.display_name,
                    email,
                    INVALID_EMAIL_MESSAGE,
                )
                continue

            # Uniqueness needs the whole scan, so addresses are only collected here
            self._index.add(email, Claimant(principal.principal_id, principal.display_name))
            stats.indexed += 1

        self._totals.add(stats)
        return stats

    @property
    def totals(self) -> PageStats:
        """Counters accumulated over every validated page."""
        return self._totals


class UniquenessChecker:
    """
    Reports email addresses claimed by more than one principal.

    Every duplicate address yields exactly one row listing all of its
    claimants in scan order. The checker never mutates the index, so running
    it twice produces the same rows.
    """

    def __init__(self, reporter: Reporter) -> None:
        self._reporter = reporter

    def check(self, index: EmailIndex) -> bool:
        """
        Check that every indexed email has exactly one claimant.

        Args:
            index: The fully populated email index

        Returns:
            True if every email is unique
        """
        unique = True
        duplicates = 0
        # No early exit: the report must list every duplicate in one pass
        for email, claimants in index.duplicates():
            unique = False
            duplicates += 1
            self._reporter.report(
                CLAIMANT_SEPARATOR.join(claimant.id for claimant in claimants),
                CLAIMANT_SEPARATOR.join(claimant.display_name for claimant in claimants),
                email,
                DUPLICATE_EMAIL_MESSAGE,
            )

        if duplicates:
            logger.info("Found %d email address(es) used by more than one user", duplicates)
        return unique


def check_uniqueness(index: EmailIndex, reporter: Reporter) -> bool:
    """Convenience wrapper around :meth:`UniquenessChecker.check`."""
    return UniquenessChecker(reporter).check(index)
