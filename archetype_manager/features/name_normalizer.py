"""
Feature name normalization.

Archetype texts are written independently of the base class, so the same
base feature shows up as "Armor Training (Ex) II", "armor training 2" or
just "Armor Training". Everything that decides whether two names refer to
the same slot compares them through normalize().
"""

import re

_PARENTHETICAL = re.compile(r"\([^)]*\)")
_WHITESPACE = re.compile(r"\s+")

# One trailing standalone tier token: 2, 2nd, +2, or a roman numeral I-X
_TRAILING_TIER = re.compile(
    r"\s+(?:\+?\d+(?:st|nd|rd|th)?|i{1,3}|iv|vi{0,3}|ix|x)$",
    re.IGNORECASE,
)


def normalize(name: str) -> str:
    """
    Canonicalize a feature name for same-slot comparison.

    Lowercases, strips parenthetical segments, strips a trailing roman
    numeral or ordinal token, and collapses whitespace.

    >>> normalize("Armor Training (Ex) II")
    'armor training'
    """
    if not name:
        return ""
    text = _PARENTHETICAL.sub(" ", name.lower())
    text = _WHITESPACE.sub(" ", text).strip()
    text = _TRAILING_TIER.sub("", text)
    return text.strip()


def names_match(a: str, b: str) -> bool:
    """True when both names normalize to the same non-empty value."""
    normalized = normalize(a)
    return bool(normalized) and normalized == normalize(b)
