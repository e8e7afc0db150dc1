"""
Slug normalization for suburb and cluster identifiers.

normalize() maps free text onto the canonical alphabet [a-z0-9-]:
  1. Case folding ("Straße" -> "strasse")
  2. Unicode NFKD decomposition, combining marks dropped ("Café" -> "cafe")
  3. Every run of non-alphanumeric characters becomes one hyphen
  4. Leading/trailing hyphens trimmed

The result is idempotent: normalize(normalize(x)) == normalize(x).
"""

import re
import unicodedata
from typing import Any, Mapping

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def strip_accents(text: str) -> str:
    """Remove diacritical marks via NFKD decomposition."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def candidate_text(raw: Any) -> str:
    """
    Pick the best raw identifier from a string or a slug/name carrier.

    Explicit ``slug`` wins over ``name``; anything else yields "".
    """
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, Mapping):
        for key in ("slug", "name"):
            value = raw.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return ""
    for attr in ("slug", "name"):
        value = getattr(raw, attr, None)
        if isinstance(value, str) and value.strip():
            return value
    return ""


def normalize(raw: Any) -> str:
    """Canonicalize a name (or slug/name carrier) into a slug."""
    text = strip_accents(candidate_text(raw).casefold())
    # Characters such as "ø" have no ASCII decomposition and fall out here
    # as separators.
    text = _NON_ALNUM_RE.sub("-", text)
    return text.strip("-")


def is_slug(value: Any) -> bool:
    return isinstance(value, str) and bool(SLUG_RE.match(value))


def title_case(slug: str) -> str:
    """Display name for a slug: "spring-hill" -> "Spring Hill"."""
    return " ".join(part[:1].upper() + part[1:] for part in (slug or "").split("-") if part)
