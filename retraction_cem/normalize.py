from __future__ import annotations

import re
from typing import Any, Optional

_SPACE_COLON_RE = re.compile(r" :")
# short trailing annotation such as " (IEEE)" or " (2nd Ed)": 2-5 visible characters
_TRAILING_PAREN_RE = re.compile(r" \((?:\s*[^\s()]){2,5}\s*\)$")
_TRAILING_COLON_SUFFIX_RE = re.compile(r": \S{2,5}$")
_LEADING_THE_RE = re.compile(r"^the ")
_DOI_PATTERN = re.compile(r"10\.\S+", re.IGNORECASE)
_YEAR_RE = re.compile(r"(?<!\d)(1[89]\d{2}|20\d{2})(?!\d)")


def normalize_journal_title(title: Any) -> str:
    """
    Canonical journal name used as a join key across the rank tables, the
    full-text metadata and the retraction records.

    Steps run in a fixed order since later patterns look at the output of
    earlier ones: lowercase, " :" -> ":", drop a short trailing
    parenthetical, drop a short trailing ": xxxx" suffix, drop a leading
    "the ", "&" -> "and", drop one trailing colon.
    """
    if title is None or not isinstance(title, str):
        return ""
    value = title.lower()
    value = _SPACE_COLON_RE.sub(":", value)
    value = _TRAILING_PAREN_RE.sub("", value)
    value = _TRAILING_COLON_SUFFIX_RE.sub("", value)
    value = _LEADING_THE_RE.sub("", value)
    value = value.replace("&", "and")
    if value.endswith(":"):
        value = value[:-1]
    return value


def normalize_doi(doi: Optional[str]) -> Optional[str]:
    """
    Normalize DOI to lowercase and strip URL prefixes; return None if invalid.
    """
    if not doi or not isinstance(doi, str):
        return None
    v = doi.strip().lower()
    v = re.sub(r"^https?://(dx\.)?doi\.org/", "", v)
    v = re.sub(r"^doi:\s*", "", v)
    m = _DOI_PATTERN.search(v)
    return m.group(0) if m else None


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    return value or None


def parse_year(value: Any) -> Optional[int]:
    """Year from an int, a float-ish cell ("2015.0") or the first 4-digit year in a string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        pass
    m = _YEAR_RE.search(text)
    return int(m.group(1)) if m else None
