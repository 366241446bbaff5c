from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from webvault.errors import InputValidationError, StoreError
from webvault.parsing.content_hash import content_hash
from webvault.storage.models import FilterDeleteResult, FilterPreview, Page, UpsertResult
from webvault.storage.tenant_store import StoreHandle
from webvault.utils.keywords import normalize_keywords


PAGE_COLUMNS = "id, url, title, content, status_code, content_hash, fetched_at, created_at, updated_at"
NEWEST_FIRST = "ORDER BY updated_at DESC, id DESC"

# text the keyword filters look at
FILTER_HAYSTACK = "casefold(url || ' ' || coalesce(title, '') || ' ' || content)"

DEFAULT_LIMIT = 50
MAX_LIMIT = 1000
DEFAULT_PREVIEW_LIMIT = 50
DELETE_CHUNK = 500


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def clamp_pagination(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    limit = DEFAULT_LIMIT if limit is None else limit
    offset = 0 if offset is None else offset
    return min(max(int(limit), 1), MAX_LIMIT), max(int(offset), 0)


def build_filter_clause(include: Sequence[str], exclude: Sequence[str]) -> Tuple[str, List[str]]:
    """WHERE clause shared by filter preview and filter delete.

    A row matches when it contains any include keyword (if any are given)
    and none of the exclude keywords. Keywords must already be normalized.
    """
    clauses: List[str] = []
    params: List[str] = []

    if include:
        clauses.append("(" + " OR ".join(f"instr({FILTER_HAYSTACK}, ?) > 0" for _ in include) + ")")
        params.extend(include)

    for keyword in exclude:
        clauses.append(f"instr({FILTER_HAYSTACK}, ?) = 0")
        params.append(keyword)

    return " AND ".join(clauses), params


class PageRepository:
    """CRUD, search and keyword filters over one tenant's pages table."""

    def __init__(self, handle: StoreHandle, *, preview_limit: int = DEFAULT_PREVIEW_LIMIT) -> None:
        self.handle = handle
        self.preview_limit = preview_limit

    @property
    def conn(self):
        return self.handle.conn

    # -------------------------------------------------------
    # Writes
    # -------------------------------------------------------

    async def upsert(
        self,
        url: str,
        title: Optional[str],
        text: str,
        status_code: Optional[int],
    ) -> UpsertResult:
        if not url or not url.strip():
            raise InputValidationError("url is required")
        if not text:
            raise InputValidationError("content is required")

        url = url.strip()
        digest = content_hash(text)
        now = _utc_now()

        async with self.handle.write_lock:
            try:
                await self.conn.execute(
                    """
                    INSERT INTO pages (url, title, content, status_code, content_hash,
                                       fetched_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(url) DO UPDATE SET
                        title = excluded.title,
                        content = excluded.content,
                        status_code = excluded.status_code,
                        content_hash = excluded.content_hash,
                        fetched_at = excluded.fetched_at,
                        updated_at = excluded.updated_at
                    """,
                    (url, title, text, status_code, digest, now, now, now),
                )
                async with self.conn.execute("SELECT id FROM pages WHERE url = ?", (url,)) as cursor:
                    row = await cursor.fetchone()
                await self.conn.commit()
            except Exception as exc:
                await self.conn.rollback()
                raise StoreError(f"Failed to store {url}: {exc}", tenant_id=self.handle.tenant_id) from exc

        logger.debug(f"[{self.handle.tenant_id}] Upserted {url} (id={row['id']}, hash={digest[:12]})")
        return UpsertResult(id=row["id"], content_hash=digest)

    async def save(self, url: str, content: str, title: Optional[str] = None) -> Page:
        """Store content the caller already has, e.g. an accepted preview item."""
        if content is None or not content.strip():
            raise InputValidationError("url and content are required")

        result = await self.upsert(url, title, content, None)
        page = await self.get(result.id)
        if page is None:
            raise StoreError(f"Saved page {url} vanished before it could be read back", tenant_id=self.handle.tenant_id)
        return page

    async def filter_delete(self, include: Iterable[str], exclude: Iterable[str]) -> FilterDeleteResult:
        clause, params = self._filter(include, exclude)

        async with self.handle.write_lock:
            try:
                async with self.conn.execute(
                    f"SELECT id FROM pages WHERE {clause} ORDER BY id", params
                ) as cursor:
                    ids = [row["id"] for row in await cursor.fetchall()]

                for start in range(0, len(ids), DELETE_CHUNK):
                    chunk = ids[start : start + DELETE_CHUNK]
                    placeholders = ", ".join("?" for _ in chunk)
                    await self.conn.execute(f"DELETE FROM pages WHERE id IN ({placeholders})", chunk)
                await self.conn.commit()
            except Exception as exc:
                await self.conn.rollback()
                raise StoreError(f"Filter delete failed: {exc}", tenant_id=self.handle.tenant_id) from exc

        logger.info(f"[{self.handle.tenant_id}] Filter delete removed {len(ids)} pages")
        return FilterDeleteResult(deleted_count=len(ids), deleted_ids=ids)

    # -------------------------------------------------------
    # Reads
    # -------------------------------------------------------

    async def get(self, page_id: int) -> Optional[Page]:
        rows = await self._fetch(f"SELECT {PAGE_COLUMNS} FROM pages WHERE id = ?", (page_id,))
        return rows[0] if rows else None

    async def get_by_url(self, url: str) -> Optional[Page]:
        rows = await self._fetch(f"SELECT {PAGE_COLUMNS} FROM pages WHERE url = ?", (url,))
        return rows[0] if rows else None

    async def list_pages(self, limit: Optional[int] = DEFAULT_LIMIT, offset: Optional[int] = 0) -> List[Page]:
        limit, offset = clamp_pagination(limit, offset)
        return await self._fetch(
            f"SELECT {PAGE_COLUMNS} FROM pages {NEWEST_FIRST} LIMIT ? OFFSET ?",
            (limit, offset),
        )

    async def search(self, query: Optional[str], limit: Optional[int] = DEFAULT_LIMIT, offset: Optional[int] = 0) -> List[Page]:
        needle = (query or "").strip().casefold()
        if not needle:
            return []

        limit, offset = clamp_pagination(limit, offset)
        return await self._fetch(
            f"""
            SELECT {PAGE_COLUMNS} FROM pages
            WHERE instr(casefold(title), ?) > 0 OR instr(casefold(content), ?) > 0
            {NEWEST_FIRST}
            LIMIT ? OFFSET ?
            """,
            (needle, needle, limit, offset),
        )

    async def list_all(self) -> List[Page]:
        return await self._fetch(f"SELECT {PAGE_COLUMNS} FROM pages {NEWEST_FIRST}")

    async def count(self) -> int:
        async with self.conn.execute("SELECT count(*) AS n FROM pages") as cursor:
            row = await cursor.fetchone()
        return row["n"]

    async def filter_preview(
        self,
        include: Iterable[str],
        exclude: Iterable[str],
        limit: Optional[int] = None,
    ) -> FilterPreview:
        clause, params = self._filter(include, exclude)
        preview_limit = self.preview_limit if limit is None else min(max(int(limit), 1), MAX_LIMIT)

        async with self.conn.execute(f"SELECT count(*) AS n FROM pages WHERE {clause}", params) as cursor:
            total = (await cursor.fetchone())["n"]

        items = await self._fetch(
            f"SELECT {PAGE_COLUMNS} FROM pages WHERE {clause} {NEWEST_FIRST} LIMIT ?",
            (*params, preview_limit),
        )
        return FilterPreview(items=items, total=total)

    # -------------------------------------------------------
    # Helpers
    # -------------------------------------------------------

    def _filter(self, include: Iterable[str], exclude: Iterable[str]) -> Tuple[str, List[str]]:
        include = normalize_keywords(include)
        exclude = normalize_keywords(exclude)
        if not include and not exclude:
            raise InputValidationError("at least one include or exclude keyword is required")
        return build_filter_clause(include, exclude)

    async def _fetch(self, sql: str, params: Sequence = ()) -> List[Page]:
        async with self.conn.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [Page.from_row(row) for row in rows]
