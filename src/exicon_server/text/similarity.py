"""
String Similarity

Normalized edit-distance similarity used to gate reference candidates.
Inputs are short exercise names, so the O(n*m) table is fine.
"""

from __future__ import annotations


def levenshtein_distance(a: str, b: str) -> int:
    """
    Classic edit distance with unit-cost insert, delete and substitute.
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(
                min(
                    previous[j] + 1,         # deletion
                    current[j - 1] + 1,      # insertion
                    previous[j - 1] + cost,  # substitution
                )
            )
        previous = current

    return previous[-1]


def similarity(a: str, b: str) -> float:
    """
    Return a score in [0, 1]; 1.0 means identical after trimming and
    lower-casing.

    Computed as ``(max_len - distance) / max_len``. Two empty strings are
    identical by convention.
    """
    s1 = a.strip().lower()
    s2 = b.strip().lower()

    if s1 == s2:
        return 1.0

    longer, shorter = (s1, s2) if len(s1) >= len(s2) else (s2, s1)
    if not longer:
        return 1.0

    distance = levenshtein_distance(longer, shorter)
    return (len(longer) - distance) / len(longer)
