"""Best-effort relevance score for search hits.

A BM25-flavoured term-frequency score over title and content. Titles
count double. The average document length is taken from the result set
being ranked, so scores are only comparable within one call.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from webvault.storage.models import Page


K1 = 1.2
B = 0.75
TITLE_WEIGHT = 2.0


def _terms(query: str) -> List[str]:
    return [term for term in query.casefold().split() if term]


def relevance_score(query: str, title: Optional[str], content: str, avg_length: float) -> float:
    terms = _terms(query)
    if not terms:
        return 0.0

    title_text = (title or "").casefold()
    body_text = content.casefold()
    length = max(len(body_text.split()), 1)
    norm = K1 * (1 - B + B * length / max(avg_length, 1.0))

    score = 0.0
    for term in terms:
        tf = body_text.count(term) + TITLE_WEIGHT * title_text.count(term)
        if tf:
            score += tf * (K1 + 1) / (tf + norm)
    return round(score, 4)


def rank_pages(pages: Iterable[Page], query: str) -> List[Tuple[Page, float]]:
    """Score pages and sort them by descending score; ties keep input order."""
    pages = list(pages)
    if not pages:
        return []
    avg_length = sum(len(page.content.split()) for page in pages) / len(pages)
    scored = [(page, relevance_score(query, page.title, page.content, avg_length)) for page in pages]
    return sorted(scored, key=lambda pair: pair[1], reverse=True)
