"""
LIG3 String Similarity

Weighted Damerau-Levenshtein distance blended with an order-independent token
bonus and a shared-prefix bonus. Built for person names and identifiers where
typing slips (swapped letters, a dropped middle initial) should cost little
while genuinely different values score low.
"""

import math
from typing import NamedTuple

from .normalization import normalize_text, tokenize

SUBSTITUTION_COST = 1.0
GAP_COST = 0.8
TRANSPOSITION_COST = 0.5

# Tunable: scales the distance before it is turned into a similarity
DISTANCE_SCALE = 1.0

PREFIX_LENGTH = 5

# Weights are in tenths so the blend stays exact on round inputs
BASE_WEIGHT = 7
TOKEN_WEIGHT = 2
PREFIX_WEIGHT = 1


class Lig3Breakdown(NamedTuple):
    """Intermediate values of one LIG3 comparison."""

    distance: float
    base: float
    token_bonus: float
    prefix_bonus: float
    score: int


def weighted_distance(a: str, b: str) -> float:
    """Optimal string alignment distance with LIG3 operation costs."""
    rows, cols = len(a) + 1, len(b) + 1
    table = [[0.0] * cols for _ in range(rows)]

    for i in range(1, rows):
        table[i][0] = i * GAP_COST
    for j in range(1, cols):
        table[0][j] = j * GAP_COST

    for i in range(1, rows):
        for j in range(1, cols):
            substitution = 0.0 if a[i - 1] == b[j - 1] else SUBSTITUTION_COST
            best = min(
                table[i - 1][j] + GAP_COST,
                table[i][j - 1] + GAP_COST,
                table[i - 1][j - 1] + substitution,
            )
            if (
                i > 1
                and j > 1
                and a[i - 1] == b[j - 2]
                and a[i - 2] == b[j - 1]
                and a[i - 1] != b[j - 1]
            ):
                best = min(best, table[i - 2][j - 2] + TRANSPOSITION_COST)
            table[i][j] = best

    return table[-1][-1]


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def base_similarity(a: str, b: str, distance: float) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 100.0
    return _clamp(100.0 * (1.0 - distance / (longest * DISTANCE_SCALE)))


def token_bonus(a: str, b: str) -> float:
    """Dice coefficient over the two token sets, on a 0-100 scale."""
    tokens_a, tokens_b = set(tokenize(a)), set(tokenize(b))
    if not tokens_a or not tokens_b:
        return 0.0
    shared = len(tokens_a & tokens_b)
    return 200.0 * shared / (len(tokens_a) + len(tokens_b))


def prefix_bonus(a: str, b: str) -> float:
    shared = 0
    for left, right in zip(a[:PREFIX_LENGTH], b[:PREFIX_LENGTH]):
        if left != right:
            break
        shared += 1
    return 100.0 * shared / PREFIX_LENGTH


def lig3_breakdown(value_a: str, value_b: str) -> Lig3Breakdown:
    """Score two strings and keep every intermediate value."""
    a, b = normalize_text(value_a), normalize_text(value_b)

    if not a or not b:
        return Lig3Breakdown(0.0, 0.0, 0.0, 0.0, 0)
    if a == b:
        return Lig3Breakdown(0.0, 100.0, 100.0, 100.0, 100)

    distance = weighted_distance(a, b)
    base = base_similarity(a, b, distance)
    tokens = token_bonus(a, b)
    prefix = prefix_bonus(a, b)

    blended = (BASE_WEIGHT * base + TOKEN_WEIGHT * tokens + PREFIX_WEIGHT * prefix) / 10.0
    score = int(math.floor(_clamp(blended) + 0.5))
    return Lig3Breakdown(distance, base, tokens, prefix, score)


def lig3_similarity(value_a: str, value_b: str) -> int:
    """LIG3 similarity of two strings, 0 to 100. Symmetric."""
    return lig3_breakdown(value_a, value_b).score
