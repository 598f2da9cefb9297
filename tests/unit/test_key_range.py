"""
Unit tests for KeyRange and query matching.
"""

import pytest

from shelfdb.engine.base import KeyRange, is_valid_key, query_matches
from shelfdb.errors import InvalidArgument


class TestKeyRange:
    """Tests for KeyRange bounds."""

    def test_only(self):
        """only() matches exactly one key."""
        r = KeyRange.only(3)
        assert r.includes(3)
        assert not r.includes(2)
        assert not r.includes(4)

    def test_closed_bound(self):
        """Closed bounds include both ends."""
        r = KeyRange.bound(2, 4)
        assert [k for k in range(6) if r.includes(k)] == [2, 3, 4]

    def test_open_bounds(self):
        """Open bounds exclude their end."""
        r = KeyRange.bound(2, 5, lower_open=True, upper_open=True)
        assert [k for k in range(7) if r.includes(k)] == [3, 4]

    def test_half_open(self):
        """Single-sided ranges are unbounded on the other side."""
        assert KeyRange.lower_bound(10).includes(10**9)
        assert not KeyRange.lower_bound(10, open=True).includes(10)
        assert KeyRange.upper_bound(10).includes(-5)
        assert not KeyRange.upper_bound(10, open=True).includes(10)

    @pytest.mark.parametrize(
        "lower, upper, lower_open, upper_open",
        [(5, 4, False, False), (3, 3, True, False), (3, 3, False, True)],
    )
    def test_empty_range_rejected(self, lower, upper, lower_open, upper_open):
        """A range that can match nothing is an invalid argument."""
        with pytest.raises(InvalidArgument):
            KeyRange.bound(lower, upper, lower_open, upper_open)

    @pytest.mark.parametrize(
        "make",
        [
            lambda: KeyRange.bound("a", 3),
            lambda: KeyRange.bound(1, 2.5),
            lambda: KeyRange.bound(None, 3),
            lambda: KeyRange.only(True),
            lambda: KeyRange.lower_bound("a"),
            lambda: KeyRange(upper=1.0),
        ],
    )
    def test_non_integer_bounds_rejected(self, make):
        """Every bound must be an integer key."""
        with pytest.raises(InvalidArgument):
            make()


class TestQueryMatches:
    """Tests for query_matches."""

    def test_none_matches_everything(self):
        assert query_matches(None, 1)
        assert query_matches(None, 99)

    def test_key_query(self):
        """A plain key matches only itself."""
        assert query_matches(2, 2)
        assert not query_matches(2, 3)

    def test_range_query(self):
        assert query_matches(KeyRange.bound(1, 2), 2)
        assert not query_matches(KeyRange.bound(1, 2), 3)


class TestIsValidKey:
    """Tests for key validation."""

    def test_ints_are_keys(self):
        assert is_valid_key(0)
        assert is_valid_key(42)

    def test_bool_is_not_a_key(self):
        """bool is an int subclass but not a key."""
        assert not is_valid_key(True)

    def test_other_types(self):
        assert not is_valid_key("1")
        assert not is_valid_key(1.0)
        assert not is_valid_key(None)
