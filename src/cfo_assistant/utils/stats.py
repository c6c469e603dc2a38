"""Statistics and string-similarity helpers used by the analytics engines."""

import math
from decimal import Decimal
from typing import Sequence, Union

Number = Union[int, float, Decimal]


def mean(values: Sequence[Number]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return sum(float(v) for v in values) / len(values)


def standard_deviation(values: Sequence[Number]) -> float:
    """Population standard deviation.

    Returns 0.0 for an empty sequence rather than NaN, so callers can build
    ``mean + k * stddev`` thresholds without special-casing empty input.

    Args:
        values: Numbers (ints, floats or Decimals).

    Returns:
        Standard deviation as a float.
    """
    n = len(values)
    if n == 0:
        return 0.0

    avg = mean(values)
    variance = sum((float(v) - avg) ** 2 for v in values) / n
    return math.sqrt(variance)


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings.

    Insertions, deletions and substitutions each cost 1. Uses the two-row
    formulation of the dynamic-programming table.

    Args:
        a: First string.
        b: Second string.

    Returns:
        Minimum number of single-character edits turning ``a`` into ``b``.
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, 1):
        current = [i]
        for j, char_b in enumerate(b, 1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(
                    min(
                        previous[j - 1] + 1,  # substitution
                        current[j - 1] + 1,  # insertion
                        previous[j] + 1,  # deletion
                    )
                )
        previous = current

    return previous[-1]


def string_similarity(a: str | None, b: str | None) -> float:
    """Case-insensitive similarity in [0, 1] based on Levenshtein distance.

    ``1 - distance / max(len(a), len(b))``; identical strings (ignoring case)
    score 1.0 and an empty or missing string on either side scores 0.0.

    Args:
        a: First string.
        b: Second string.

    Returns:
        Similarity score between 0 and 1.
    """
    if not a or not b:
        return 0.0

    a_lower = a.lower()
    b_lower = b.lower()
    if a_lower == b_lower:
        return 1.0

    distance = levenshtein_distance(a_lower, b_lower)
    return 1.0 - distance / max(len(a_lower), len(b_lower))
