import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

import httpx
from loguru import logger

from webvault.errors import InputValidationError, StoreError
from webvault.monitoring.metrics_server import (
    REQUEST_COUNT,
    FAILED_REQUESTS,
    CRAWLED_PAGES,
    REQUEST_LATENCY,
    WORKER_PROCESSED,
    WORKER_FAILED,
    WORKER_ACTIVE,
    FETCH_IN_FLIGHT,
    SKIPPED_NON_TEXT,
    SKIPPED_LARGE_BODIES,
)
from webvault.parsing.html_extractor import extract_content
from webvault.storage.page_repository import PageRepository
from webvault.utils.config_loader import Config, DEFAULT_USER_AGENT
from webvault.utils.keywords import contains_casefold
from webvault.utils.url_utils import clean_url_list


MODE_CRAWL = "crawl"
MODE_PREVIEW = "preview"

DEFAULT_CONCURRENCY = 8
DEFAULT_MAX_URLS = 1000
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_MAX_CONTENT_CHARS = 20_000
MAX_DOWNLOAD_BYTES = 2_000_000
MAX_REASON_LENGTH = 300

ACCEPT_HEADER = "text/html,application/xhtml+xml,application/xml;q=0.9,text/plain;q=0.8,*/*;q=0.5"


@dataclass
class FetchResult:
    url: str
    status_code: int
    content: str
    content_type: str
    skipped: bool
    redirect_count: int = 0
    skip_reason: Optional[str] = None


@dataclass
class CrawlOutcome:
    """Per-URL result of a crawl batch: ``ok``, ``failed`` or ``skipped``."""

    url: str
    status: str
    id: Optional[int] = None
    status_code: Optional[int] = None
    content_hash: Optional[str] = None
    reason: Optional[str] = None
    resolved_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"url": self.url, "status": self.status}
        optional = {
            "id": self.id,
            "statusCode": self.status_code,
            "contentHash": self.content_hash,
            "reason": self.reason,
            "resolvedUrl": self.resolved_url,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload


@dataclass
class PreviewItem:
    url: str
    title: Optional[str]
    content: str
    status_code: Optional[int] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"url": self.url, "title": self.title, "content": self.content}
        if self.status_code is not None:
            payload["statusCode"] = self.status_code
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload


BatchItem = Union[CrawlOutcome, PreviewItem]


def _is_text_content(content_type: str) -> bool:
    # servers that omit the header get the benefit of the doubt
    if not content_type:
        return True
    return content_type.startswith("text/") or "xml" in content_type


class FetchWorker:
    def __init__(
        self,
        client: httpx.AsyncClient,
        worker_id: int,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_download_bytes: Optional[int] = None,
        max_content_chars: Optional[int] = DEFAULT_MAX_CONTENT_CHARS,
    ):
        self.client = client
        self.worker_id = worker_id
        self.name = f"Worker-{worker_id}"
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_download_bytes = max_download_bytes
        self.max_content_chars = max_content_chars

    # --------------------------
    #  HTTP fetch with metrics
    # --------------------------
    async def _fetch(self, url: str) -> FetchResult:
        worker_label = str(self.worker_id)
        REQUEST_COUNT.labels(worker=worker_label).inc()

        start = time.perf_counter()
        if self.client is None:
            raise RuntimeError("HTTP client is not initialized")

        FETCH_IN_FLIGHT.inc()
        try:
            resp = await self.client.get(
                url,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": ACCEPT_HEADER,
                },
            )

            content_type = (resp.headers.get("Content-Type") or "").lower()
            body = resp.content or b""
            final_url = str(resp.url)
            redirect_count = len(resp.history)

            download_limit = self.max_download_bytes or MAX_DOWNLOAD_BYTES
            if len(body) > download_limit:
                SKIPPED_LARGE_BODIES.labels(worker=worker_label).inc()
                return FetchResult(
                    url=final_url,
                    status_code=resp.status_code,
                    content="",
                    content_type=content_type,
                    skipped=True,
                    redirect_count=redirect_count,
                    skip_reason="body_too_large",
                )

            if not _is_text_content(content_type):
                SKIPPED_NON_TEXT.labels(worker=worker_label).inc()
                return FetchResult(
                    url=final_url,
                    status_code=resp.status_code,
                    content="",
                    content_type=content_type,
                    skipped=True,
                    redirect_count=redirect_count,
                    skip_reason="non_text_content",
                )

            return FetchResult(
                url=final_url,
                status_code=resp.status_code,
                content=resp.text or "",
                content_type=content_type,
                skipped=False,
                redirect_count=redirect_count,
            )
        finally:
            FETCH_IN_FLIGHT.dec()
            elapsed = time.perf_counter() - start
            REQUEST_LATENCY.labels(worker=worker_label).observe(elapsed)

    # --------------------------
    #  Per-URL processing
    # --------------------------
    async def process_url(
        self,
        url: str,
        mode: str,
        *,
        repository: Optional[PageRepository] = None,
        query: Optional[str] = None,
    ) -> Optional[BatchItem]:
        """Fetch, extract and (in crawl mode) persist one URL.

        Never raises: every failure becomes a ``failed`` item for this URL.
        Preview mode returns None for pages that are empty or miss the query.
        """
        worker_label = str(self.worker_id)
        status_code: Optional[int] = None

        try:
            # --------------------------
            # 1) Fetch stage
            # --------------------------
            fetch_result = await asyncio.wait_for(self._fetch(url), timeout=self.request_timeout)
            status_code = fetch_result.status_code

            if fetch_result.skipped:
                logger.info(
                    f"[{self.name}] Rejected {url} ({fetch_result.skip_reason}, status={status_code})"
                )
                return self._failed(url, mode, fetch_result.skip_reason or "unexpected", status_code)

            if status_code >= 400:
                FAILED_REQUESTS.labels(worker=worker_label).inc()
                logger.info(f"[{self.name}] {url} answered HTTP {status_code}")
                return self._failed(url, mode, f"http_status_{status_code}", status_code)

            # --------------------------
            # 2) Extraction stage
            # --------------------------
            extracted = extract_content(fetch_result.content, self.max_content_chars)

            if extracted.is_empty:
                logger.info(f"[{self.name}] No content extracted from {url}")
                if mode == MODE_PREVIEW:
                    return None
                return CrawlOutcome(url=url, status="skipped", status_code=status_code, reason="empty_content")

            if mode == MODE_PREVIEW:
                if not contains_casefold(extracted.text, query):
                    logger.debug(f"[{self.name}] Dropping {url}; query not found")
                    return None
                return PreviewItem(
                    url=fetch_result.url,
                    title=extracted.title,
                    content=extracted.text,
                    status_code=status_code,
                )

            # --------------------------
            # 3) Storage stage
            # --------------------------
            # the resolved URL is stored so redirect chains collapse to one row
            stored = await repository.upsert(fetch_result.url, extracted.title, extracted.text, status_code)

            CRAWLED_PAGES.labels(worker=worker_label).inc()
            logger.info(
                f"[{self.name}] Crawled: {url} (id={stored.id}, status={status_code}, chars={len(extracted.text)})"
            )
            return CrawlOutcome(
                url=url,
                status="ok",
                id=stored.id,
                status_code=status_code,
                content_hash=stored.content_hash,
                resolved_url=fetch_result.url if fetch_result.url != url else None,
            )

        except Exception as e:
            logger.error(f"[{self.name}] Error processing {url}: {e!r}")
            WORKER_FAILED.labels(worker_id=worker_label).inc()
            category = self._categorize_error(e)
            detail = str(e).strip()
            reason = f"{category}: {detail}" if detail else category
            return self._failed(url, mode, reason[:MAX_REASON_LENGTH], status_code)

        finally:
            WORKER_PROCESSED.labels(worker_id=worker_label).inc()

    def _failed(self, url: str, mode: str, reason: str, status_code: Optional[int]) -> BatchItem:
        if mode == MODE_PREVIEW:
            return PreviewItem(url=url, title=None, content="", status_code=status_code, reason=reason)
        return CrawlOutcome(url=url, status="failed", status_code=status_code, reason=reason)

    def _categorize_error(self, exc: Exception) -> str:
        if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
            return "network_timeout"
        if isinstance(exc, httpx.TransportError):
            return "connection_error"
        if isinstance(exc, StoreError):
            return "db_error"
        if isinstance(exc, (ValueError, UnicodeDecodeError)):
            return "parse_error"
        return "unexpected"

    # --------------------------
    #  Worker loop
    # --------------------------
    async def run(
        self,
        queue: "asyncio.Queue[str]",
        mode: str,
        results: List[BatchItem],
        *,
        repository: Optional[PageRepository] = None,
        query: Optional[str] = None,
    ) -> None:
        worker_label = str(self.worker_id)
        WORKER_ACTIVE.labels(worker_id=worker_label).set(1.0)
        logger.debug(f"{self.name} started.")

        try:
            while True:
                try:
                    url = queue.get_nowait()
                except asyncio.QueueEmpty:
                    break

                logger.debug(f"[{self.name}] Dequeued: {url}")
                item = await self.process_url(url, mode, repository=repository, query=query)
                if item is not None:
                    results.append(item)
                queue.task_done()
        finally:
            WORKER_ACTIVE.labels(worker_id=worker_label).set(0.0)


class FetchPool:
    """Runs a URL batch through a fixed number of workers sharing one queue."""

    def __init__(
        self,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_urls: int = DEFAULT_MAX_URLS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_download_bytes: Optional[int] = None,
        max_content_chars: Optional[int] = DEFAULT_MAX_CONTENT_CHARS,
        user_agent: str = DEFAULT_USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.max_urls = max_urls
        self.request_timeout = request_timeout
        self.max_download_bytes = max_download_bytes
        self.max_content_chars = max_content_chars
        self.user_agent = user_agent
        self.client = client
        self.transport = transport

    @classmethod
    def from_config(cls, config: Config, **kwargs: Any) -> "FetchPool":
        return cls(
            concurrency=config.fetch_workers,
            max_urls=config.max_urls_per_batch,
            request_timeout=config.request_timeout,
            max_download_bytes=config.max_download_bytes,
            max_content_chars=config.max_content_chars,
            user_agent=config.crawler_user_agent,
            **kwargs,
        )

    def validate_urls(self, urls: Optional[Sequence[str]]) -> List[str]:
        if urls is None or isinstance(urls, str):
            raise InputValidationError("urls must be a list of strings")
        cleaned = clean_url_list(urls)
        if not cleaned:
            raise InputValidationError("urls must contain at least one URL")
        if len(cleaned) > self.max_urls:
            raise InputValidationError(f"too many urls: {len(cleaned)} > {self.max_urls}")
        return cleaned

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=self.request_timeout),
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            yield client

    async def run(
        self,
        urls: Sequence[str],
        mode: str = MODE_CRAWL,
        *,
        repository: Optional[PageRepository] = None,
        query: Optional[str] = None,
    ) -> List[BatchItem]:
        if mode not in (MODE_CRAWL, MODE_PREVIEW):
            raise InputValidationError(f"unknown mode '{mode}'")
        if mode == MODE_CRAWL and repository is None:
            raise ValueError("crawl mode needs a page repository")

        batch = self.validate_urls(urls)
        query = (query or "").strip() or None

        queue: "asyncio.Queue[str]" = asyncio.Queue()
        for url in batch:
            queue.put_nowait(url)

        results: List[BatchItem] = []
        started = time.perf_counter()
        worker_count = min(self.concurrency, len(batch))

        async with self._client_scope() as client:
            workers = [
                FetchWorker(
                    client,
                    i,
                    user_agent=self.user_agent,
                    request_timeout=self.request_timeout,
                    max_download_bytes=self.max_download_bytes,
                    max_content_chars=self.max_content_chars,
                )
                for i in range(1, worker_count + 1)
            ]
            await asyncio.gather(
                *(w.run(queue, mode, results, repository=repository, query=query) for w in workers)
            )

        logger.info(
            f"{mode} batch of {len(batch)} URLs finished in {time.perf_counter() - started:.2f}s "
            f"with {worker_count} workers ({len(results)} items)"
        )
        return results

    async def crawl(self, urls: Sequence[str], repository: PageRepository) -> List[CrawlOutcome]:
        return await self.run(urls, MODE_CRAWL, repository=repository)

    async def preview(self, urls: Sequence[str], query: Optional[str] = None) -> List[PreviewItem]:
        return await self.run(urls, MODE_PREVIEW, query=query)
