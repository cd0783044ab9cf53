"""Edit-distance matching for fuzzy search."""

from typing import Iterable


def edit_distance(a: str, b: str, max_distance: int) -> int:
    """
    Optimal string alignment distance (a transposition counts as one edit).

    Stops early once every cell in a row exceeds max_distance and returns
    max_distance + 1 in that case.

    Args:
        a: First string
        b: Second string
        max_distance: Largest distance of interest

    Returns:
        Distance, capped at max_distance + 1
    """
    if a == b:
        return 0
    if abs(len(a) - len(b)) > max_distance:
        return max_distance + 1

    prev_prev: list[int] = []
    prev = list(range(len(b) + 1))
    for i in range(1, len(a) + 1):
        current = [i] + [0] * len(b)
        for j in range(1, len(b) + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            current[j] = min(
                prev[j] + 1,         # deletion
                current[j - 1] + 1,  # insertion
                prev[j - 1] + cost,  # substitution
            )
            if i > 1 and j > 1 and a[i - 1] == b[j - 2] and a[i - 2] == b[j - 1]:
                current[j] = min(current[j], prev_prev[j - 2] + 1)
        if min(current) > max_distance:
            return max_distance + 1
        prev_prev, prev = prev, current

    return min(prev[-1], max_distance + 1)


def fuzzy_match(term: str, token: str, distance: int) -> bool:
    return edit_distance(term, token, distance) <= distance


def expand_term(term: str, vocabulary: Iterable[str], distance: int) -> set[str]:
    """All vocabulary tokens within distance edits of term."""
    return {token for token in vocabulary if fuzzy_match(term, token, distance)}
