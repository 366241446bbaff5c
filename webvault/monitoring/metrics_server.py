from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    generate_latest,
    Counter,
    Gauge,
    Histogram,
)

# -------------------------
# Fetch worker metrics
# -------------------------

WORKER_PROCESSED = Counter(
    "webvault_worker_processed_total",
    "URLs processed by a fetch worker",
    ["worker_id"],
)

WORKER_FAILED = Counter(
    "webvault_worker_failed_total",
    "URLs that ended in a failed outcome",
    ["worker_id"],
)

WORKER_ACTIVE = Gauge(
    "webvault_worker_active",
    "Worker active state",
    ["worker_id"],
)

FETCH_IN_FLIGHT = Gauge(
    "webvault_fetch_in_flight",
    "HTTP fetches currently in flight",
)

# -------------------------
# Request metrics
# -------------------------

REQUEST_COUNT = Counter(
    "webvault_requests_total",
    "Total HTTP requests",
    ["worker"]
)

FAILED_REQUESTS = Counter(
    "webvault_failed_requests_total",
    "Failed HTTP requests",
    ["worker"]
)

CRAWLED_PAGES = Counter(
    "webvault_crawled_pages_total",
    "Pages persisted by crawl batches",
    ["worker"]
)

SKIPPED_NON_TEXT = Counter(
    "webvault_skipped_non_text_total",
    "Responses rejected because the body is not text",
    ["worker"]
)

SKIPPED_LARGE_BODIES = Counter(
    "webvault_skipped_large_bodies_total",
    "Responses rejected because the body exceeds the download limit",
    ["worker"]
)

REQUEST_LATENCY = Histogram(
    "webvault_request_latency_seconds",
    "Time to fetch a page",
    ["worker"]
)

# -------------------------
# Job aggregation metrics
# -------------------------

JOB_SOURCE_REQUESTS = Counter(
    "webvault_job_source_requests_total",
    "Job source calls by outcome",
    ["source", "outcome"]
)

JOB_CACHE_LOOKUPS = Counter(
    "webvault_job_cache_lookups_total",
    "Aggregated job search cache lookups",
    ["result"]
)


# -------------------------
# /metrics endpoint
# -------------------------

async def metrics_handler(request):
    data = generate_latest()

    # aiohttp rejects a charset inside content_type
    ctype = CONTENT_TYPE_LATEST.split(";")[0]

    return web.Response(
        body=data,
        content_type=ctype
    )
