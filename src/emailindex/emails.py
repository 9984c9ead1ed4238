"""Email address syntax checking."""

from __future__ import annotations

from collections.abc import Callable

from email_validator import EmailNotValidError, validate_email

EmailPredicate = Callable[[str], bool]


def is_valid_email(email: str) -> bool:
    """
    Check whether an email address is syntactically valid.

    Only the syntax is checked; no DNS lookups are made, so the result does
    not depend on the network.

    Example:
        >>> is_valid_email("a@x.com")
        True
        >>> is_valid_email("not-an-email")
        False
    """
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True
