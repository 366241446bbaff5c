"""Public job boards queried by the aggregated job search.

Each source knows its endpoint, the query parameters it accepts and how
to turn one item of its JSON payload into a ``JobPosting``. Boards that
cannot search server-side are filtered here: every query term has to
appear in the posting's title, company, description or tags.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from webvault.jobs.models import JobPosting
from webvault.parsing.html_extractor import extract_text


MAX_DESCRIPTION_CHARS = 500


def _clean_description(raw: Any) -> str:
    if not raw or not isinstance(raw, str):
        return ""
    text = extract_text(raw) if "<" in raw else " ".join(raw.split())
    if len(text) > MAX_DESCRIPTION_CHARS:
        text = text[:MAX_DESCRIPTION_CHARS].rstrip() + "..."
    return text


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    return None


def _join(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return _text(value)
    if isinstance(value, (list, tuple)):
        parts = []
        for entry in value:
            if isinstance(entry, dict):
                entry = entry.get("name")
            if isinstance(entry, str) and entry.strip():
                parts.append(entry.strip())
        return ", ".join(parts) or None
    return None


def _tags(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    tags = []
    for entry in value:
        if isinstance(entry, dict):
            entry = entry.get("name")
        if isinstance(entry, str) and entry.strip():
            tags.append(entry.strip())
    return tags


def matches_all_terms(posting: JobPosting, query: str) -> bool:
    haystack = " ".join(
        [posting.title, posting.company or "", posting.description, " ".join(posting.tags)]
    ).casefold()
    return all(term in haystack for term in query.casefold().split())


class JobSource:
    name: str = ""
    endpoint: str = ""
    server_side_search: bool = False

    def build_params(self, query: str, limit: int) -> Dict[str, Any]:
        return {}

    def extract_items(self, payload: Any) -> List[Any]:
        raise NotImplementedError

    def to_posting(self, item: Dict[str, Any]) -> Optional[JobPosting]:
        raise NotImplementedError

    async def search(self, client: httpx.AsyncClient, query: str, limit: int) -> List[JobPosting]:
        resp = await client.get(
            self.endpoint,
            params=self.build_params(query, limit),
            headers={"Accept": "application/json"},
        )
        resp.raise_for_status()
        payload = resp.json()

        postings: List[JobPosting] = []
        for item in self.extract_items(payload) or []:
            if not isinstance(item, dict):
                continue
            posting = self.to_posting(item)
            if posting is None:
                continue
            if not self.server_side_search and not matches_all_terms(posting, query):
                continue
            postings.append(posting)
            if len(postings) >= limit:
                break
        return postings

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class ArbeitnowSource(JobSource):
    name = "arbeitnow"
    endpoint = "https://www.arbeitnow.com/api/job-board-api"

    def extract_items(self, payload):
        return payload.get("data") if isinstance(payload, dict) else []

    def to_posting(self, item):
        title = _text(item.get("title"))
        if title is None:
            return None
        location = _text(item.get("location"))
        if item.get("remote"):
            location = f"{location} (remote)" if location else "Remote"
        return JobPosting(
            title=title,
            source=self.name,
            url=_text(item.get("url")),
            location=location,
            company=_text(item.get("company_name")),
            description=_clean_description(item.get("description")),
            tags=_tags(item.get("tags")),
        )


class RemotiveSource(JobSource):
    name = "remotive"
    endpoint = "https://remotive.com/api/remote-jobs"
    server_side_search = True

    def build_params(self, query, limit):
        return {"search": query, "limit": limit}

    def extract_items(self, payload):
        return payload.get("jobs") if isinstance(payload, dict) else []

    def to_posting(self, item):
        title = _text(item.get("title"))
        if title is None:
            return None
        return JobPosting(
            title=title,
            source=self.name,
            url=_text(item.get("url")),
            location=_join(item.get("candidate_required_location")),
            company=_text(item.get("company_name")),
            description=_clean_description(item.get("description")),
            tags=_tags(item.get("tags")),
        )


class RemoteOkSource(JobSource):
    name = "remoteok"
    endpoint = "https://remoteok.com/api"

    def extract_items(self, payload):
        # the first element is a legal notice, not a job
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict) and item.get("position")]

    def to_posting(self, item):
        title = _text(item.get("position"))
        if title is None:
            return None
        return JobPosting(
            title=title,
            source=self.name,
            url=_text(item.get("url")) or _text(item.get("apply_url")),
            location=_join(item.get("location")),
            company=_text(item.get("company")),
            description=_clean_description(item.get("description")),
            tags=_tags(item.get("tags")),
        )


class TheMuseSource(JobSource):
    name = "themuse"
    endpoint = "https://www.themuse.com/api/public/jobs"

    def build_params(self, query, limit):
        return {"page": 0, "descending": "true"}

    def extract_items(self, payload):
        return payload.get("results") if isinstance(payload, dict) else []

    def to_posting(self, item):
        title = _text(item.get("name"))
        if title is None:
            return None
        company = item.get("company")
        refs = item.get("refs")
        return JobPosting(
            title=title,
            source=self.name,
            url=_text(refs.get("landing_page")) if isinstance(refs, dict) else None,
            location=_join(item.get("locations")),
            company=_text(company.get("name")) if isinstance(company, dict) else None,
            description=_clean_description(item.get("contents")),
            tags=_tags(item.get("categories")),
        )


class JobicySource(JobSource):
    name = "jobicy"
    endpoint = "https://jobicy.com/api/v2/remote-jobs"
    server_side_search = True

    def build_params(self, query, limit):
        return {"count": min(limit, 50), "tag": query}

    def extract_items(self, payload):
        return payload.get("jobs") if isinstance(payload, dict) else []

    def to_posting(self, item):
        title = _text(item.get("jobTitle"))
        if title is None:
            return None
        return JobPosting(
            title=title,
            source=self.name,
            url=_text(item.get("url")),
            location=_join(item.get("jobGeo")),
            company=_text(item.get("companyName")),
            description=_clean_description(item.get("jobExcerpt") or item.get("jobDescription")),
            tags=_tags(item.get("jobIndustry")),
        )


class HimalayasSource(JobSource):
    name = "himalayas"
    endpoint = "https://himalayas.app/jobs/api"

    def build_params(self, query, limit):
        return {"limit": min(limit, 20)}

    def extract_items(self, payload):
        return payload.get("jobs") if isinstance(payload, dict) else []

    def to_posting(self, item):
        title = _text(item.get("title"))
        if title is None:
            return None
        return JobPosting(
            title=title,
            source=self.name,
            url=_text(item.get("applicationLink")) or _text(item.get("guid")),
            location=_join(item.get("locationRestrictions")) or "Remote",
            company=_text(item.get("companyName")),
            description=_clean_description(item.get("excerpt") or item.get("description")),
            tags=_tags(item.get("categories")),
        )


def default_sources() -> List[JobSource]:
    return [
        ArbeitnowSource(),
        RemotiveSource(),
        RemoteOkSource(),
        TheMuseSource(),
        JobicySource(),
        HimalayasSource(),
    ]
