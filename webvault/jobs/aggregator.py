import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
from loguru import logger

from webvault.errors import InputValidationError
from webvault.jobs.cache import TTLCache
from webvault.jobs.models import AggregatedSearch, JobPosting
from webvault.jobs.sources import JobSource, default_sources
from webvault.monitoring.metrics_server import JOB_CACHE_LOOKUPS, JOB_SOURCE_REQUESTS
from webvault.utils.config_loader import Config, DEFAULT_USER_AGENT
from webvault.utils.keywords import normalize_query
from webvault.utils.url_utils import normalize_url


DEFAULT_CACHE_TTL = 300
DEFAULT_SOURCE_TIMEOUT = 10.0
DEFAULT_PER_SOURCE_LIMIT = 50
DEFAULT_RESULT_LIMIT = 50
MAX_RESULT_LIMIT = 500


def dedup_key(posting: JobPosting) -> str:
    if posting.url:
        normalized = normalize_url(posting.url)
        if normalized:
            return normalized
    return f"{posting.title.casefold()}|{(posting.company or '').casefold()}"


def merge_postings(batches: Sequence[List[JobPosting]]) -> List[JobPosting]:
    """Concatenate per-source batches in source order; the first posting per key wins."""
    seen: set[str] = set()
    merged: List[JobPosting] = []
    for batch in batches:
        for posting in batch:
            key = dedup_key(posting)
            if key in seen:
                continue
            seen.add(key)
            merged.append(posting)
    return merged


@dataclass
class SourceBatches:
    """Raw outcome of one fan-out: each source's postings in source order."""

    query: str
    batches: Dict[str, List[JobPosting]]
    failed_sources: Dict[str, str]
    cached: bool = False


class JobAggregator:
    """Fans one job query out to every source and merges what comes back.

    Source failures are isolated: the call returns whatever succeeded plus
    the failed source names. Each source is queried once per normalized
    query with ``per_source_limit``; the caller's ``limit`` then cuts every
    source's batch before merging, so it means "results per source".
    Batches are cached per normalized query for ``cache_ttl`` seconds, and
    identical queries arriving while a fan-out is running wait for that
    fan-out instead of starting another.
    """

    def __init__(
        self,
        sources: Optional[Sequence[JobSource]] = None,
        *,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        source_timeout: float = DEFAULT_SOURCE_TIMEOUT,
        per_source_limit: int = DEFAULT_PER_SOURCE_LIMIT,
        user_agent: str = DEFAULT_USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sources = list(sources) if sources is not None else default_sources()
        self.source_timeout = source_timeout
        self.per_source_limit = per_source_limit
        self.user_agent = user_agent
        self.client = client
        self.transport = transport
        self.cache: TTLCache[SourceBatches] = TTLCache(cache_ttl, clock=clock)
        self._inflight: Dict[str, "asyncio.Task[SourceBatches]"] = {}

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> "JobAggregator":
        return cls(
            cache_ttl=config.job_cache_ttl,
            source_timeout=config.job_source_timeout,
            per_source_limit=config.job_per_source_limit,
            user_agent=config.crawler_user_agent,
            **kwargs,
        )

    # -------------------------------------------------------
    # Public API
    # -------------------------------------------------------

    async def search(self, query: Optional[str], limit: Optional[int] = DEFAULT_RESULT_LIMIT) -> AggregatedSearch:
        key = normalize_query(query)
        if not key:
            raise InputValidationError("query is required")
        limit = DEFAULT_RESULT_LIMIT if limit is None else min(max(int(limit), 1), MAX_RESULT_LIMIT)

        # no await between the cache check and the in-flight registration
        cached = self.cache.get(key)
        if cached is not None:
            JOB_CACHE_LOOKUPS.labels(result="hit").inc()
            logger.debug(f"Job search cache hit for '{key}'")
            return self._assemble(cached, limit, cache_hit=True)

        task = self._inflight.get(key)
        joined = task is not None
        if task is None:
            JOB_CACHE_LOOKUPS.labels(result="miss").inc()
            task = asyncio.ensure_future(self._fan_out(key))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        else:
            JOB_CACHE_LOOKUPS.labels(result="joined").inc()

        fan_out = await asyncio.shield(task)
        # a joined caller was served from the cache only if the fan-out was cached
        return self._assemble(fan_out, limit, cache_hit=joined and fan_out.cached)

    def invalidate(self, query: Optional[str] = None) -> None:
        if query is None:
            self.cache.clear()
            return
        self.cache.invalidate(normalize_query(query))

    def _assemble(self, fan_out: SourceBatches, limit: int, *, cache_hit: bool) -> AggregatedSearch:
        batches = {name: postings[:limit] for name, postings in fan_out.batches.items()}
        return AggregatedSearch(
            query=fan_out.query,
            items=merge_postings(list(batches.values())),
            per_source_counts={name: len(postings) for name, postings in batches.items()},
            failed_sources=dict(fan_out.failed_sources),
            cache_hit=cache_hit,
        )

    # -------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=self.source_timeout),
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
            transport=self.transport,
        ) as client:
            yield client

    async def _fan_out(self, key: str) -> SourceBatches:
        started = time.perf_counter()
        async with self._client_scope() as client:
            outcomes = await asyncio.gather(
                *(self._query_source(client, source, key) for source in self.sources)
            )

        batches: Dict[str, List[JobPosting]] = {}
        failed_sources: Dict[str, str] = {}
        for name, postings, error in outcomes:
            batches[name] = postings
            if error is not None:
                failed_sources[name] = error

        fan_out = SourceBatches(query=key, batches=batches, failed_sources=failed_sources)

        if len(failed_sources) < len(self.sources):
            fan_out.cached = True
            self.cache.set(key, fan_out)
        else:
            logger.warning(f"All {len(self.sources)} job sources failed for '{key}'; result not cached")

        logger.info(
            f"Job search '{key}': {sum(len(p) for p in batches.values())} postings from "
            f"{len(self.sources) - len(failed_sources)}/{len(self.sources)} sources "
            f"in {time.perf_counter() - started:.2f}s"
        )
        return fan_out

    async def _query_source(
        self,
        client: httpx.AsyncClient,
        source: JobSource,
        key: str,
    ) -> Tuple[str, List[JobPosting], Optional[str]]:
        try:
            postings = await asyncio.wait_for(
                source.search(client, key, self.per_source_limit),
                timeout=self.source_timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            JOB_SOURCE_REQUESTS.labels(source=source.name, outcome="timeout").inc()
            logger.warning(f"Job source {source.name} timed out for '{key}'")
            return source.name, [], "timeout"
        except Exception as e:
            JOB_SOURCE_REQUESTS.labels(source=source.name, outcome="error").inc()
            logger.warning(f"Job source {source.name} failed for '{key}': {e!r}")
            return source.name, [], (str(e) or type(e).__name__)[:200]

        JOB_SOURCE_REQUESTS.labels(source=source.name, outcome="ok").inc()
        return source.name, postings, None
