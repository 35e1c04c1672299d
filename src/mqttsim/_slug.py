"""Slug normalisation for human-readable device identifiers."""

from __future__ import annotations

import re
import unicodedata

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

FALLBACK_SLUG = "device"


def to_slug(value: str) -> str:
    """Normalise *value* into a URL/topic-safe slug.

    Lowercases, strips diacritics (NFKD decomposition), collapses runs
    of non-alphanumerics into single hyphens and trims edge hyphens.
    Falls back to ``"device"`` when nothing is left.

    Example::

        >>> to_slug("Küche Decke #2")
        'kuche-decke-2'
    """
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    slug = _NON_ALNUM.sub("-", stripped.lower()).strip("-")
    return slug or FALLBACK_SLUG


def suffixed(base: str, n: int) -> str:
    """Return the *n*-th collision candidate for *base* (``n >= 2``)."""
    return f"{base}-{n}"
