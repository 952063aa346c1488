"""Unit tests for three-valued logic, LIKE patterns and cancellation."""

from __future__ import annotations

import pytest

from rel_engine.domain.errors import QueryCancelledError, TypeMismatchError
from rel_engine.domain.value_objects import CancellationToken, Truth, matches_pattern

T, F, U = Truth.TRUE, Truth.FALSE, Truth.UNKNOWN


@pytest.mark.unit
class TestTruth:
    """Tests for the tri-state truth value."""

    @pytest.mark.parametrize(
        "left,right,expected",
        [
            (T, T, T), (T, F, F), (T, U, U),
            (F, F, F), (F, U, F), (U, U, U),
        ],
    )
    def test_and(self, left: Truth, right: Truth, expected: Truth) -> None:
        """Test the AND truth table (both operand orders)."""
        assert left & right is expected
        assert right & left is expected

    @pytest.mark.parametrize(
        "left,right,expected",
        [
            (T, T, T), (T, F, T), (T, U, T),
            (F, F, F), (F, U, U), (U, U, U),
        ],
    )
    def test_or(self, left: Truth, right: Truth, expected: Truth) -> None:
        """Test the OR truth table (both operand orders)."""
        assert left | right is expected
        assert right | left is expected

    def test_not(self) -> None:
        """Test NOT keeps UNKNOWN."""
        assert ~T is F
        assert ~F is T
        assert ~U is U

    def test_conversions(self) -> None:
        """Test converting between SQL values and truth values."""
        assert Truth.of(None) is U
        assert Truth.of(True) is T
        assert U.to_value() is None
        assert F.to_value() is False
        assert T.is_true and not U.is_true

    def test_non_boolean_condition(self) -> None:
        """Test an INTEGER cannot be used as a condition."""
        with pytest.raises(TypeMismatchError):
            Truth.of(1)


@pytest.mark.unit
class TestMatchesPattern:
    """Tests for LIKE pattern matching."""

    def test_reference_examples(self) -> None:
        """Test the canonical wildcard examples."""
        assert matches_pattern("apple", "a%") is True
        assert matches_pattern("hat", "h_t") is True
        assert matches_pattern("50%", "50\\%%", "\\") is True
        assert matches_pattern("abc", "___") is True
        assert matches_pattern("ab", "___") is False

    def test_anchored(self) -> None:
        """Test the pattern must match the whole value."""
        assert matches_pattern("pineapple", "apple") is False
        assert matches_pattern("pineapple", "%apple") is True

    def test_case_sensitivity(self) -> None:
        """Test default case-insensitive matching and the opt-in."""
        assert matches_pattern("Apple", "a%") is True
        assert matches_pattern("Apple", "a%", case_sensitive=True) is False

    def test_regex_metacharacters_are_literal(self) -> None:
        """Test characters special to regular expressions match themselves."""
        assert matches_pattern("a.c", "a.c") is True
        assert matches_pattern("abc", "a.c") is False
        assert matches_pattern("(x)", "(%)") is True

    def test_escape(self) -> None:
        """Test escaped wildcards and a trailing escape character."""
        assert matches_pattern("a_b", "a!_b", "!") is True
        assert matches_pattern("axb", "a!_b", "!") is False
        assert matches_pattern("ab!", "ab!", "!") is True

    def test_null(self) -> None:
        """Test NULL operands give unknown."""
        assert matches_pattern(None, "a%") is None
        assert matches_pattern("a", None) is None

    def test_invalid_operands(self) -> None:
        """Test non-text operands and long escapes are rejected."""
        with pytest.raises(TypeMismatchError):
            matches_pattern(1, "1")  # type: ignore[arg-type]
        with pytest.raises(TypeMismatchError):
            matches_pattern("a", "a", "ab")


@pytest.mark.unit
class TestCancellationToken:
    """Tests for the cancellation token."""

    def test_check_before_cancel(self) -> None:
        """Test an untriggered token does nothing."""
        token = CancellationToken()
        token.check()
        assert not token.cancelled

    def test_cancel_with_reason(self) -> None:
        """Test the reason is carried by the raised error."""
        token = CancellationToken()
        token.cancel("stopping")
        assert token.cancelled
        with pytest.raises(QueryCancelledError, match="stopping"):
            token.check()
