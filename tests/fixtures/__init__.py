"""
Shared test fixtures for the emailindex package.

This module provides reusable test helpers including:
- Principal factories (make_user, make_group, make_users)
- Failing stores that break on a chosen page or batch
- An error type carrying a driver-style exit ``code``

Usage:
    from tests.fixtures import (
        FailingIndexStore,
        FailingPrincipalSource,
        make_user,
        make_users,
    )
"""

from tests.fixtures.principals import (
    CodedError,
    FailingIndexStore,
    FailingPrincipalSource,
    make_group,
    make_user,
    make_users,
)

__all__ = [
    "CodedError",
    "FailingIndexStore",
    "FailingPrincipalSource",
    "make_group",
    "make_user",
    "make_users",
]
