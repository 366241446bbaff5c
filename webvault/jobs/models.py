from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class JobPosting:
    """A job hit from one source, normalized to the common shape."""

    title: str
    source: str
    url: Optional[str]
    location: Optional[str] = None
    company: Optional[str] = None
    description: str = ""
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "source": self.source,
            "company": self.company,
            "location": self.location,
            "url": self.url,
            "description": self.description,
            "tags": list(self.tags),
        }


@dataclass
class AggregatedSearch:
    query: str
    items: List[JobPosting]
    per_source_counts: Dict[str, int]
    failed_sources: Dict[str, str]
    cache_hit: bool = False

    @property
    def failed_count(self) -> int:
        return len(self.failed_sources)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "perSourceCounts": dict(self.per_source_counts),
            "failedCount": self.failed_count,
            "failedSources": dict(self.failed_sources),
            "cacheHit": self.cache_hit,
        }
