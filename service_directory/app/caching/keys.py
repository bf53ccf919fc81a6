"""
Cache key construction for directory listings.

Keys have a fixed shape so that admin tooling and invalidation can match
families of entries by prefix::

    <namespace>:<campus>:<letter>:<search>

An absent component is an empty segment, never omitted, so ``ns:CSM::``
(campus only) and ``ns:CSM:A:`` (campus and letter) stay distinguishable and
every key has the same number of segments.
"""

from typing import List, Optional

from ..domain.models import CachePriority, ItemFilter


def _escape(value: str) -> str:
    # Keep ':' out of components so the segment count never changes
    return value.replace("%", "%25").replace(":", "%3A")


def normalize_campus(campus: Optional[str]) -> str:
    """Campus names are matched exactly by the repository, so only trim."""
    return _escape(campus.strip()) if campus else ""


def normalize_letter(letter: Optional[str]) -> str:
    return _escape(letter.strip().upper()) if letter else ""


def normalize_search(search: Optional[str]) -> str:
    """Searches are case-insensitive lookups."""
    return _escape(search.strip().lower()) if search else ""


def normalize_filter(filters: ItemFilter) -> ItemFilter:
    """
    The filter the origin should see for a given key.

    Applies the same trimming and case rules as ``build_key`` (without
    escaping) so two requests sharing a key also share a result.
    """
    campus = filters.campus.strip() if filters.campus else ""
    letter = filters.letter.strip().upper() if filters.letter else ""
    search = filters.search.strip().lower() if filters.search else ""
    return ItemFilter(campus=campus or None, letter=letter or None, search=search or None)


def build_key(namespace: str, filters: ItemFilter) -> str:
    """Build the cache key for a listing query."""
    return ":".join([
        namespace,
        normalize_campus(filters.campus),
        normalize_letter(filters.letter),
        normalize_search(filters.search),
    ])


def build_invalidation_patterns(namespace: str, campus: Optional[str], letter: Optional[str]) -> List[str]:
    """
    Key prefixes that may hold a row with this campus and letter.

    Covers the exact campus/letter family, the campus-wide and letter-wide
    families, the unfiltered listing, and the catch-all ``ns::`` for every
    listing not scoped to a campus (including searches).
    """
    c = normalize_campus(campus)
    l = normalize_letter(letter)  # noqa: E741
    candidates = [
        f"{namespace}:{c}:{l}:",
        f"{namespace}:{c}::",
        f"{namespace}::{l}:",
        f"{namespace}:::",
        f"{namespace}::",
    ]

    patterns: List[str] = []
    for pattern in candidates:
        if pattern not in patterns:
            patterns.append(pattern)
    return patterns


def is_cacheable_search(search: Optional[str], min_length: int, max_length: Optional[int] = None) -> bool:
    """
    Whether a search term may be cached.

    Absent searches are always cacheable. Short terms are typed-in-progress
    noise and would grow the key space without ever being reused.
    """
    if search is None:
        return True
    term = search.strip()
    if not term:
        return True
    if len(term) < min_length:
        return False
    if max_length is not None and len(term) > max_length:
        return False
    return True


def classify_priority(filters: ItemFilter) -> CachePriority:
    """Unfiltered and campus-wide listings are hot; searches are cold."""
    if normalize_search(filters.search):
        return CachePriority.COLD
    if not normalize_letter(filters.letter):
        return CachePriority.HOT
    return CachePriority.WARM


def describe_key(namespace: str, key: str) -> str:
    """Classify a key for the dashboard breakdown."""
    prefix = f"{namespace}:"
    if not key.startswith(prefix):
        return "other"

    parts = key[len(prefix):].split(":")
    if len(parts) != 3:
        return "other"

    campus, letter, search = parts
    if search:
        return "search"
    if campus and letter:
        return "campus_letter"
    if campus:
        return "campus"
    if letter:
        return "letter"
    return "all"
