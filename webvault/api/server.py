from __future__ import annotations

import json
from typing import Any, Optional, Type, TypeVar

from aiohttp import web
from loguru import logger
from pydantic import BaseModel, ValidationError

from webvault.api.schemas import CrawlRequest, FilterRequest, PreviewRequest, SavePageRequest
from webvault.errors import InputValidationError, StoreError
from webvault.jobs.aggregator import JobAggregator
from webvault.monitoring.metrics_server import metrics_handler
from webvault.storage.page_repository import PageRepository, clamp_pagination
from webvault.storage.tenant_store import TenantStoreRegistry
from webvault.utils.ranking import rank_pages
from webvault.worker import FetchPool


REGISTRY_KEY = web.AppKey("registry", TenantStoreRegistry)
POOL_KEY = web.AppKey("fetch_pool", FetchPool)
AGGREGATOR_KEY = web.AppKey("job_aggregator", JobAggregator)

M = TypeVar("M", bound=BaseModel)


# -------------------------------
# ERROR MAPPING
# -------------------------------
@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except InputValidationError as e:
        return web.json_response({"error": str(e)}, status=400)
    except ValidationError as e:
        return web.json_response(
            {"error": "invalid request", "details": e.errors(include_url=False, include_context=False)},
            status=400,
        )
    except StoreError as e:
        logger.error(f"Store failure on {request.method} {request.path}: {e}")
        return web.json_response({"error": str(e)}, status=500)


# -------------------------------
# HELPERS
# -------------------------------
async def _parse_body(request: web.Request, model: Type[M]) -> M:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InputValidationError("request body must be JSON")
    return model.model_validate(payload or {})


def _int_param(request: web.Request, name: str, default: Optional[int]) -> Optional[int]:
    raw = request.query.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InputValidationError(f"{name} must be an integer")


async def _repository(request: web.Request, chat_id: Any) -> PageRepository:
    handle = await request.app[REGISTRY_KEY].open(chat_id)
    return PageRepository(handle)


def _chat_id(request: web.Request) -> Optional[str]:
    return request.query.get("chatId")


# -------------------------------
# HANDLERS
# -------------------------------
async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def crawl(request: web.Request) -> web.Response:
    body = await _parse_body(request, CrawlRequest)
    pool = request.app[POOL_KEY]
    batch = pool.validate_urls(body.urls)
    repository = await _repository(request, body.chat_id)
    items = await pool.crawl(batch, repository)
    return web.json_response({"items": [item.to_dict() for item in items]})


async def preview(request: web.Request) -> web.Response:
    body = await _parse_body(request, PreviewRequest)
    items = await request.app[POOL_KEY].preview(body.urls, body.query)
    return web.json_response({"items": [item.to_dict() for item in items]})


async def list_pages(request: web.Request) -> web.Response:
    limit, offset = clamp_pagination(_int_param(request, "limit", None), _int_param(request, "offset", 0))
    repository = await _repository(request, _chat_id(request))
    items = await repository.list_pages(limit, offset)
    return web.json_response({"items": [page.to_dict() for page in items], "limit": limit, "offset": offset})


async def search_pages(request: web.Request) -> web.Response:
    query = request.query.get("q", "").strip()
    limit, offset = clamp_pagination(_int_param(request, "limit", None), _int_param(request, "offset", 0))
    repository = await _repository(request, _chat_id(request))
    pages = await repository.search(query, limit, offset)

    if request.query.get("sort") == "relevance":
        items = [dict(page.to_dict(), score=score) for page, score in rank_pages(pages, query)]
    else:
        items = [page.to_dict() for page in pages]
    return web.json_response({"items": items, "limit": limit, "offset": offset})


async def all_pages(request: web.Request) -> web.Response:
    repository = await _repository(request, _chat_id(request))
    items = await repository.list_all()
    return web.json_response({"items": [page.to_dict() for page in items], "total": len(items)})


async def get_page(request: web.Request) -> web.Response:
    page_id = int(request.match_info["page_id"])
    repository = await _repository(request, _chat_id(request))
    page = await repository.get(page_id)
    if page is None:
        return web.json_response({"error": "Not found"}, status=404)
    return web.json_response(page.to_dict())


async def save_page(request: web.Request) -> web.Response:
    body = await _parse_body(request, SavePageRequest)
    repository = await _repository(request, body.chat_id)
    page = await repository.save(body.url, body.content, body.title)
    return web.json_response({"id": page.id, "contentHash": page.content_hash}, status=201)


async def filter_preview(request: web.Request) -> web.Response:
    body = await _parse_body(request, FilterRequest)
    repository = await _repository(request, body.chat_id)
    result = await repository.filter_preview(body.include, body.exclude, body.limit)
    return web.json_response(result.to_dict())


async def filter_delete(request: web.Request) -> web.Response:
    body = await _parse_body(request, FilterRequest)
    repository = await _repository(request, body.chat_id)
    result = await repository.filter_delete(body.include, body.exclude)
    return web.json_response(result.to_dict())


async def search_jobs(request: web.Request) -> web.Response:
    query = request.query.get("q", "")
    limit = _int_param(request, "limit", None)
    result = await request.app[AGGREGATOR_KEY].search(query, limit)
    return web.json_response(result.to_dict())


# -------------------------------
# APPLICATION
# -------------------------------
async def _close_stores(app: web.Application) -> None:
    await app[REGISTRY_KEY].close()


def create_app(
    registry: TenantStoreRegistry,
    pool: FetchPool,
    aggregator: JobAggregator,
) -> web.Application:
    app = web.Application(middlewares=[error_middleware], client_max_size=2 * 1024 * 1024)
    app[REGISTRY_KEY] = registry
    app[POOL_KEY] = pool
    app[AGGREGATOR_KEY] = aggregator

    app.router.add_get("/api/health", health)
    app.router.add_post("/api/crawl", crawl)
    app.router.add_post("/api/preview", preview)
    app.router.add_get("/api/pages", list_pages)
    app.router.add_post("/api/pages", save_page)
    app.router.add_get("/api/pages/search", search_pages)
    app.router.add_get("/api/pages/all", all_pages)
    app.router.add_get(r"/api/pages/{page_id:\d+}", get_page)
    app.router.add_post("/api/pages/filter-preview", filter_preview)
    app.router.add_post("/api/pages/filter-delete", filter_delete)
    app.router.add_get("/api/jobs/search", search_jobs)
    app.router.add_get("/metrics", metrics_handler)

    app.on_cleanup.append(_close_stores)
    return app
