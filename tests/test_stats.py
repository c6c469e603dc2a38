"""Tests for statistics and string-similarity helpers."""

from decimal import Decimal

import pytest

from cfo_assistant.utils.stats import (
    levenshtein_distance,
    mean,
    standard_deviation,
    string_similarity,
)


class TestStandardDeviation:
    """Tests for population standard deviation."""

    def test_empty_sequence_is_zero(self) -> None:
        """Test that an empty sequence gives 0 rather than NaN."""
        assert standard_deviation([]) == 0.0

    def test_single_value_is_zero(self) -> None:
        """Test that a single value has no spread."""
        assert standard_deviation([5]) == 0.0

    def test_population_formula(self) -> None:
        """Test the population (not sample) formula."""
        assert standard_deviation([1, 2, 3, 4, 5]) == pytest.approx(1.4142, abs=1e-4)

    def test_accepts_decimals(self) -> None:
        """Test that Decimal amounts are accepted."""
        values = [Decimal("100.00"), Decimal("100.00"), Decimal("100.00")]
        assert standard_deviation(values) == 0.0

    def test_mean_of_empty_is_zero(self) -> None:
        """Test that the mean of nothing is 0."""
        assert mean([]) == 0.0
        assert mean([2, 4]) == 3.0


class TestLevenshteinDistance:
    """Tests for edit distance."""

    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ("", "", 0),
            ("abc", "", 3),
            ("", "abc", 3),
            ("kitten", "sitting", 3),
            ("flaw", "lawn", 2),
            ("INV-200", "INV-200", 0),
        ],
    )
    def test_distances(self, a: str, b: str, expected: int) -> None:
        """Test known edit distances."""
        assert levenshtein_distance(a, b) == expected

    def test_symmetric(self) -> None:
        """Test that distance does not depend on argument order."""
        assert levenshtein_distance("payroll", "payrun") == levenshtein_distance("payrun", "payroll")


class TestStringSimilarity:
    """Tests for normalized string similarity."""

    def test_case_insensitive_exact_match(self) -> None:
        """Test that strings differing only in case are identical."""
        assert string_similarity("INV001", "inv001") == 1.0

    def test_empty_side_scores_zero(self) -> None:
        """Test that an empty or missing string scores 0."""
        assert string_similarity("", "x") == 0.0
        assert string_similarity("x", "") == 0.0
        assert string_similarity(None, "x") == 0.0

    def test_partial_similarity(self) -> None:
        """Test 1 - distance / longest length."""
        # One substitution over 7 characters
        assert string_similarity("INV-200", "INV-201") == pytest.approx(1 - 1 / 7)

    def test_result_in_unit_interval(self) -> None:
        """Test that completely different strings stay within [0, 1]."""
        score = string_similarity("abc", "xyzxyz")
        assert 0.0 <= score <= 1.0
