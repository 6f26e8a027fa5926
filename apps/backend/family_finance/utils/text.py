"""
Name normalization used when matching payees, merchants and category names.
"""

import re
import unicodedata

_NON_WORD = re.compile(r"[^0-9a-z]+")


def normalize_name(value: str | None) -> str:
    """
    Normalize a free-text name for comparison.

    - NFKC normalization
    - casefold
    - drop whitespace and punctuation

    Example:
        >>> normalize_name("Netflix.com  (Monthly)")
        "netflixcommonthly"
    """
    if not value:
        return ""
    normalized = unicodedata.normalize("NFKC", value).casefold()
    return _NON_WORD.sub("", normalized)


def names_match(left: str | None, right: str | None) -> bool:
    """True when either normalized name contains the other."""
    a = normalize_name(left)
    b = normalize_name(right)
    if not a or not b:
        return False
    return a in b or b in a
