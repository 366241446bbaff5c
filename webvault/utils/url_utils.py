import re
from typing import Iterable, List
from urllib.parse import urlparse, urlunparse


_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def _clean_tracking_params(query: str) -> str:
    clean_query = re.sub(r"(utm_[^=&]+|sessionid|fbclid|ref|gclid)=[^&]*", "", query, flags=re.IGNORECASE)
    clean_query = re.sub(r"&&+", "&", clean_query).strip("&")
    return clean_query


def ensure_scheme(value: str) -> str:
    """Prefix ``https://`` to a bare host/path entry."""
    if _SCHEME_RE.match(value):
        return value
    return f"https://{value}"


def clean_url_list(entries: Iterable[str]) -> List[str]:
    """Trim entries, drop blanks and give every entry an http(s) scheme.

    Order and duplicates are preserved; callers correlate results by URL.
    """
    cleaned = []
    for entry in entries:
        if not isinstance(entry, str):
            continue
        value = entry.strip()
        if value:
            cleaned.append(ensure_scheme(value))
    return cleaned


def normalize_url(link: str) -> str | None:
    """Canonical form of an absolute URL used as a dedup identity."""
    try:
        raw_link = link.strip()
        if raw_link.startswith("//"):
            raw_link = f"https:{raw_link}"

        parsed = urlparse(raw_link)

        if parsed.scheme.lower() not in ("http", "https"):
            return None

        clean_query = _clean_tracking_params(parsed.query)

        path = parsed.path or "/"
        path = re.sub(r"/{2,}", "/", path)
        if path != "/" and path.endswith("/"):
            path = path[:-1]

        parsed = parsed._replace(
            scheme=parsed.scheme.lower(),
            netloc=parsed.netloc.lower(),
            path=path,
            query=clean_query,
            fragment="",
        )
        return urlunparse(parsed)

    except Exception:
        return None

