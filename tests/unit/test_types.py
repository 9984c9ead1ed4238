"""
Unit tests for the core data structures.

Tests cover:
- principal_kind / is_user_id classification
- Principal model aliases and defaults
- EmailIndex ordering, duplicates and mapping
- ValidationState gates
- ErrorRecord CSV rows
"""

import pytest
from pydantic import ValidationError

from emailindex.types import (
    Claimant,
    EmailIndex,
    ErrorRecord,
    MappingEntry,
    Principal,
    ValidationState,
    is_user_id,
    principal_kind,
)


class TestPrincipalKind:
    """Tests for principal id classification."""

    @pytest.mark.parametrize(
        ("principal_id", "kind"),
        [
            ("u:cam:abc", "u"),
            ("g:cam:staff", "g"),
            ("u1", "u"),
            ("g1", "g"),
            ("", None),
        ],
    )
    def test_kind(self, principal_id: str, kind: str | None) -> None:
        assert principal_kind(principal_id) == kind

    def test_multi_letter_prefix_is_not_a_user(self) -> None:
        assert principal_kind("user:cam:abc") == "user"
        assert is_user_id("user:cam:abc") is False

    def test_is_user_id(self) -> None:
        assert is_user_id("u:cam:abc")
        assert not is_user_id("g:cam:staff")


class TestPrincipal:
    """Tests for the Principal model."""

    def test_validate_from_column_names(self) -> None:
        principal = Principal.model_validate(
            {"principalId": "u:cam:abc", "displayName": "Alice", "email": "a@x.com"}
        )
        assert principal.principal_id == "u:cam:abc"
        assert principal.display_name == "Alice"
        assert principal.email == "a@x.com"
        assert principal.is_user

    def test_python_names_accepted(self) -> None:
        principal = Principal(principal_id="g:cam:staff")
        assert principal.display_name == ""
        assert principal.email is None
        assert not principal.is_user

    def test_none_display_name_becomes_empty(self) -> None:
        principal = Principal.model_validate({"principalId": "u1", "displayName": None})
        assert principal.display_name == ""

    def test_empty_id_is_not_a_user(self) -> None:
        principal = Principal(principal_id="")
        assert principal.principal_id == ""
        assert principal.is_user is False

    def test_none_id_becomes_empty(self) -> None:
        principal = Principal.model_validate(
            {"principalId": None, "displayName": "ghost", "email": None}
        )
        assert principal.principal_id == ""
        assert principal.is_user is False

    def test_frozen(self) -> None:
        principal = Principal(principal_id="u1")
        with pytest.raises(ValidationError):
            principal.email = "a@x.com"  # type: ignore[misc]


class TestEmailIndex:
    """Tests for EmailIndex."""

    def test_claimants_keep_insertion_order(self) -> None:
        index = EmailIndex()
        index.add("a@x.com", Claimant("u1", "Alice"))
        index.add("a@x.com", Claimant("u3", "Carol"))

        assert index.claimants("a@x.com") == [Claimant("u1", "Alice"), Claimant("u3", "Carol")]
        assert index.claimant_count == 2
        assert len(index) == 1

    def test_claimants_of_unknown_email_is_empty(self) -> None:
        assert EmailIndex().claimants("nobody@x.com") == []

    def test_keys_are_case_sensitive(self) -> None:
        index = EmailIndex()
        index.add("A@x.com", Claimant("u1", "Alice"))
        index.add("a@x.com", Claimant("u2", "Bob"))

        assert len(index) == 2
        assert list(index.duplicates()) == []
        assert "A@x.com" in index
        assert "a@X.com" not in index

    def test_duplicates(self) -> None:
        index = EmailIndex()
        index.add("a@x.com", Claimant("u1", "Alice"))
        index.add("b@x.com", Claimant("u2", "Bob"))
        index.add("a@x.com", Claimant("u3", "Carol"))

        duplicates = list(index.duplicates())
        assert duplicates == [("a@x.com", [Claimant("u1", "Alice"), Claimant("u3", "Carol")])]

    def test_to_mapping_excludes_duplicates(self) -> None:
        index = EmailIndex()
        index.add("a@x.com", Claimant("u1", "Alice"))
        index.add("b@x.com", Claimant("u2", "Bob"))
        index.add("a@x.com", Claimant("u3", "Carol"))

        assert index.to_mapping() == [MappingEntry("b@x.com", "u2")]

    def test_returned_lists_are_copies(self) -> None:
        index = EmailIndex()
        index.add("a@x.com", Claimant("u1", "Alice"))
        index.claimants("a@x.com").append(Claimant("u9", "Mallory"))

        assert index.claimant_count == 1


class TestValidationState:
    """Tests for ValidationState gates."""

    def test_initial_state_has_not_passed(self) -> None:
        state = ValidationState()
        assert state.emails_valid is True
        assert state.emails_unique is None
        assert state.passed is False

    def test_passed_requires_both_gates(self) -> None:
        assert ValidationState(emails_valid=True, emails_unique=True).passed
        assert not ValidationState(emails_valid=False, emails_unique=True).passed
        assert not ValidationState(emails_valid=True, emails_unique=False).passed


class TestErrorRecord:
    """Tests for ErrorRecord rows."""

    def test_missing_email_becomes_empty_cell(self) -> None:
        record = ErrorRecord("u2", "Bob", None, "missing email address")
        assert record.to_row() == {
            "principalId": "u2",
            "displayName": "Bob",
            "email": "",
            "message": "missing email address",
        }
