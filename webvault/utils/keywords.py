from typing import Iterable, List, Optional


def normalize_keywords(keywords: Optional[Iterable[str]]) -> List[str]:
    """Casefold and trim keywords, dropping blanks and repeats (order kept)."""
    if not keywords:
        return []
    normalized: List[str] = []
    for keyword in keywords:
        if not isinstance(keyword, str):
            continue
        candidate = keyword.strip().casefold()
        if candidate and candidate not in normalized:
            normalized.append(candidate)
    return normalized


def contains_casefold(haystack: Optional[str], needle: Optional[str]) -> bool:
    """Case-insensitive literal substring test; an empty needle always matches."""
    if not needle:
        return True
    return needle.casefold() in (haystack or "").casefold()


def normalize_query(query: Optional[str]) -> str:
    return " ".join((query or "").split()).casefold()
