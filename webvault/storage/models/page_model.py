from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional


@dataclass
class Page:
    """
    One stored page of a tenant, unique by url.
    """
    id: int
    url: str
    title: Optional[str]
    content: str
    status_code: Optional[int]
    content_hash: Optional[str]
    fetched_at: str
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Page":
        return cls(
            id=row["id"],
            url=row["url"],
            title=row["title"],
            content=row["content"],
            status_code=row["status_code"],
            content_hash=row["content_hash"],
            fetched_at=row["fetched_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def __str__(self):
        return f"{self.url} [{self.status_code}]"


@dataclass
class UpsertResult:
    id: int
    content_hash: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "contentHash": self.content_hash}


@dataclass
class FilterPreview:
    items: list[Page]
    total: int

    def to_dict(self) -> dict[str, Any]:
        return {"items": [page.to_dict() for page in self.items], "total": self.total}


@dataclass
class FilterDeleteResult:
    deleted_count: int
    deleted_ids: list[int]

    def to_dict(self) -> dict[str, Any]:
        return {"deletedCount": self.deleted_count, "deletedIds": self.deleted_ids}
