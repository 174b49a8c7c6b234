"""Institution and account-name normalization used by the account matcher.

All helpers are total: ``None`` and odd input degrade to an empty string
(or ``None`` for :func:`extract_last4`) instead of raising.
"""

import re
from typing import Any

# Aggregator institution names -> labels used on local cards/bank accounts.
INSTITUTION_ALIASES: dict[str, str] = {
    "american express": "Amex",
    "amex": "Amex",
    "bank of america": "Bank of America",
    "barclays": "Barclays",
    "capital one": "Capital One",
    "chase": "Chase",
    "jpmorgan chase": "Chase",
    "citibank": "Citi",
    "citi": "Citi",
    "discover": "Discover",
    "fnbo": "FNBO",
    "first national bank of omaha": "FNBO",
    "goldman sachs": "Goldman Sachs",
    "marcus by goldman sachs": "Goldman Sachs",
    "hsbc": "HSBC",
    "navy federal": "Navy Federal",
    "navy federal credit union": "Navy Federal",
    "penfed": "PenFed",
    "pentagon federal credit union": "PenFed",
    "synchrony": "Synchrony",
    "synchrony bank": "Synchrony",
    "td bank": "TD Bank",
    "us bank": "US Bank",
    "usaa": "USAA",
    "wells fargo": "Wells Fargo",
    "ally": "Ally",
    "ally bank": "Ally",
}

_NON_DIGITS = re.compile(r"\D")
_NOTES_LAST4 = re.compile(r"···\s?(\d{4})")


def norm_text(value: Any) -> str:
    """Lower-case and trim; ``None`` becomes ``""``."""
    if value is None:
        return ""
    return str(value).lower().strip()


def norm_digits(value: Any) -> str:
    """Strip every non-digit character; ``None`` becomes ``""``."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


def normalize_institution(raw: str | None) -> str:
    """Map an aggregator institution name onto the local label.

    Lookup is case- and surrounding-whitespace-insensitive. Names without
    an alias come back unchanged.
    """
    if raw is None:
        return ""
    return INSTITUTION_ALIASES.get(norm_text(raw), raw)


def same_institution(a: str | None, b: str | None) -> bool:
    """True when both labels are present and equal after ``norm_text``."""
    left, right = norm_text(a), norm_text(b)
    return bool(left) and left == right


def extract_last4(record: Any) -> str | None:
    """Return the last four digits identifying a card, or ``None``.

    Looks at ``last4``, then ``mask`` (the first with at least four
    digits wins), then a ``···1234`` group inside ``notes``. ``record``
    may be a model or a plain mapping.
    """
    if record is None:
        return None

    def field(name: str) -> Any:
        if isinstance(record, dict):
            return record.get(name)
        return getattr(record, name, None)

    for candidate in (field("last4"), field("mask")):
        digits = norm_digits(candidate)
        if len(digits) >= 4:
            return digits[-4:]

    match = _NOTES_LAST4.search(str(field("notes") or ""))
    if match:
        return match.group(1)
    return None
