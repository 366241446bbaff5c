from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup


NON_CONTENT_TAGS = ["script", "style", "noscript"]


@dataclass
class ExtractedContent:
    title: Optional[str]
    text: str

    @property
    def is_empty(self) -> bool:
        return not self.text


def _collapse(value: str) -> str:
    return " ".join(value.split())


def _title_from(soup: BeautifulSoup) -> str | None:
    if soup.title is None:
        return None
    title = _collapse(soup.title.get_text(" "))
    return title or None


def _text_from(soup: BeautifulSoup) -> str:
    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()
    return _collapse(soup.get_text(separator=" ", strip=True))


def extract_title(html: str) -> str | None:
    try:
        return _title_from(BeautifulSoup(html, "lxml"))
    except Exception:
        return None


def extract_text(html: str) -> str:
    """
    Plain text of a document: script/style blocks dropped, tags removed,
    whitespace runs collapsed to single spaces.
    """
    try:
        return _text_from(BeautifulSoup(html, "lxml"))
    except Exception:
        return ""


def extract_content(html: str, max_chars: int | None = None) -> ExtractedContent:
    """Title and body text from one parse of ``html``.

    The title is read before non-content tags are removed. ``max_chars``
    caps the stored text; the cap is applied on a whitespace boundary
    when one is close enough.
    """
    if not html or not html.strip():
        return ExtractedContent(title=None, text="")

    try:
        soup = BeautifulSoup(html, "lxml")
        title = _title_from(soup)
        text = _text_from(soup)
    except Exception:
        return ExtractedContent(title=None, text="")

    if max_chars is not None and len(text) > max_chars:
        cut = text[:max_chars]
        boundary = cut.rfind(" ")
        if boundary > max_chars * 0.8:
            cut = cut[:boundary]
        text = cut.rstrip()

    return ExtractedContent(title=title, text=text)
