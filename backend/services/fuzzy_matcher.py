"""Map a free-text card name from the aggregator onto a catalog product name."""

import re

_NON_WORD = re.compile(r"[^a-z0-9\s]")

# Added to a catalog name that contains every token of the external name,
# so subset hits always outrank partial overlaps.
FULL_COVERAGE_BONUS = 10


def tokenize(text: str) -> list[str]:
    """Lower-case alphanumeric words, punctuation dropped."""
    return _NON_WORD.sub("", text.lower()).split()


def fuzzy_match_card_name(external_name: str | None, catalog_names: list[str] | None) -> str | None:
    """Return the catalog name that best matches ``external_name``.

    An exact (case-insensitive) hit wins outright. Otherwise each catalog
    name is scored by how many of the external name's tokens it contains.
    A name containing all of them scores ``count + 10``; any other name
    must contain at least half of them. The first name with the highest
    score wins, and ``external_name`` is returned unchanged when nothing
    qualifies (or when either input is empty).
    """
    if not external_name or not catalog_names:
        return external_name

    lowered = external_name.lower()
    for name in catalog_names:
        if name.lower() == lowered:
            return name

    external_tokens = tokenize(external_name)
    best_match: str | None = None
    best_score = 0

    for name in catalog_names:
        catalog_tokens = set(tokenize(name))
        hits = sum(1 for token in external_tokens if token in catalog_tokens)

        if hits == len(external_tokens) and hits > best_score:
            best_score = hits + FULL_COVERAGE_BONUS
            best_match = name
        elif hits > best_score and hits >= len(external_tokens) / 2:
            best_score = hits
            best_match = name

    return best_match or external_name
