from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import aiosqlite
from loguru import logger

from webvault.errors import StoreError
from webvault.parsing.content_hash import content_hash


DEFAULT_TENANT_ID = "default"
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS pages (
        id INTEGER PRIMARY KEY,
        url TEXT NOT NULL UNIQUE,
        title TEXT,
        content TEXT NOT NULL,
        status_code INTEGER,
        content_hash TEXT,
        fetched_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
        updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_pages_updated_at ON pages (updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_pages_content_hash ON pages (content_hash)",
)

# Columns added after the first schema revision; older stores get them via ALTER TABLE.
# SQLite refuses non-constant defaults on ADD COLUMN, hence the literal epoch.
MIGRATED_COLUMNS = (
    ("title", "title TEXT"),
    ("status_code", "status_code INTEGER"),
    ("content_hash", "content_hash TEXT"),
    ("fetched_at", "fetched_at TEXT NOT NULL DEFAULT '1970-01-01T00:00:00+00:00'"),
)


def sanitize_tenant_id(tenant_id: object) -> str:
    """Strip everything outside ``[a-zA-Z0-9_-]``; empty results fall back to the default id."""
    raw = "" if tenant_id is None else str(tenant_id)
    safe = _UNSAFE_CHARS.sub("", raw)
    return safe or DEFAULT_TENANT_ID


def _casefold(value: Optional[str]) -> str:
    return value.casefold() if value else ""


@dataclass
class StoreHandle:
    """An open tenant store.

    ``write_lock`` serializes multi-statement writes on the shared connection.
    """

    tenant_id: str
    path: Path
    conn: aiosqlite.Connection
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def close(self) -> None:
        await self.conn.close()


class TenantStoreRegistry:
    """Opens one SQLite file per tenant and caches the handle for reuse."""

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)
        self._handles: Dict[str, StoreHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def path_for(self, tenant_id: object) -> Path:
        return self.data_dir / f"chat-{sanitize_tenant_id(tenant_id)}.db"

    # -------------------------------------------------------
    # open / evict
    # -------------------------------------------------------

    async def open(self, tenant_id: object) -> StoreHandle:
        safe_id = sanitize_tenant_id(tenant_id)

        handle = self._handles.get(safe_id)
        if handle is not None:
            return handle

        lock = self._locks.setdefault(safe_id, asyncio.Lock())
        async with lock:
            # another caller may have finished opening while we waited
            handle = self._handles.get(safe_id)
            if handle is not None:
                return handle

            handle = await self._create(safe_id)
            self._handles[safe_id] = handle
            return handle

    async def evict(self, tenant_id: object) -> bool:
        safe_id = sanitize_tenant_id(tenant_id)
        handle = self._handles.pop(safe_id, None)
        if handle is None:
            return False
        await handle.close()
        logger.info(f"Closed tenant store {safe_id}")
        return True

    async def close(self) -> None:
        for safe_id in list(self._handles):
            await self.evict(safe_id)

    def is_open(self, tenant_id: object) -> bool:
        return sanitize_tenant_id(tenant_id) in self._handles

    # -------------------------------------------------------
    # creation + schema
    # -------------------------------------------------------

    async def _create(self, safe_id: str) -> StoreHandle:
        path = self.path_for(safe_id)
        conn: Optional[aiosqlite.Connection] = None
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(path)
            conn.row_factory = aiosqlite.Row
            await conn.create_function("casefold", 1, _casefold, deterministic=True)
            await conn.execute("PRAGMA journal_mode=WAL")
            await self._init_schema(conn)
        except Exception as exc:
            logger.error(f"Failed to open tenant store {safe_id} at {path}: {exc}")
            if conn is not None:
                await conn.close()
            raise StoreError(f"Could not open store for tenant '{safe_id}': {exc}", tenant_id=safe_id) from exc

        logger.info(f"Opened tenant store {safe_id} at {path}")
        return StoreHandle(tenant_id=safe_id, path=path, conn=conn)

    async def _init_schema(self, conn: aiosqlite.Connection) -> None:
        async with conn.execute("PRAGMA table_info(pages)") as cursor:
            existing = {row["name"] for row in await cursor.fetchall()}

        if existing:
            for name, definition in MIGRATED_COLUMNS:
                if name not in existing:
                    logger.info(f"Adding missing column pages.{name}")
                    await conn.execute(f"ALTER TABLE pages ADD COLUMN {definition}")

        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
        await self._backfill_hashes(conn)
        await conn.commit()

    async def _backfill_hashes(self, conn: aiosqlite.Connection) -> None:
        # rows written before content_hash existed
        async with conn.execute("SELECT id, content FROM pages WHERE content_hash IS NULL") as cursor:
            rows = await cursor.fetchall()
        if not rows:
            return
        await conn.executemany(
            "UPDATE pages SET content_hash = ? WHERE id = ?",
            [(content_hash(row["content"]), row["id"]) for row in rows],
        )
        logger.info(f"Backfilled content_hash for {len(rows)} pages")
