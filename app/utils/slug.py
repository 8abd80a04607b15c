"""
URL slug helpers
"""

import re
import unicodedata
from typing import Any, Iterable

FALLBACK_SLUG = "untitled"

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9-]")
_HYPHEN_RUNS = re.compile(r"-{2,}")


def slugify(text: Any) -> str:
    """Create a URL-safe slug from a title.

    Never raises: ``None`` and non-string values are accepted, and input
    with nothing usable left maps to ``"untitled"``.
    """
    if text is None:
        return FALLBACK_SLUG
    s = str(text)
    # fold accents so "Café" keeps its letters
    s = unicodedata.normalize("NFKD", s).encode("ascii", "ignore").decode("ascii")
    s = s.lower().strip()
    s = _WHITESPACE.sub("-", s)
    s = _DISALLOWED.sub("", s)
    s = _HYPHEN_RUNS.sub("-", s)
    s = s.strip("-")
    return s or FALLBACK_SLUG


def unique_slug(base: str, taken: Iterable[str]) -> str:
    """Return ``base`` or the first free ``base-N`` (N starting at 2)"""
    existing = set(taken)
    slug = base
    idx = 1
    while slug in existing:
        idx += 1
        slug = f"{base}-{idx}"
    return slug
