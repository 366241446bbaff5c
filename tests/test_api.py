import httpx
import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from webvault.api.server import create_app
from webvault.jobs.aggregator import JobAggregator
from webvault.jobs.models import JobPosting
from webvault.jobs.sources import JobSource
from webvault.storage.tenant_store import TenantStoreRegistry
from webvault.worker import FetchPool


class StaticSource(JobSource):
    name = "static"

    async def search(self, client, query, limit):
        return [JobPosting(title=f"{query} developer", source=self.name, url="https://jobs.test/1")]


async def _site(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/down":
        return httpx.Response(502, text="bad gateway")
    return httpx.Response(
        200,
        headers={"Content-Type": "text/html"},
        text=f"<title>Doc {request.url.path}</title><p>Remote Python role at {request.url.path}</p>",
    )


@pytest_asyncio.fixture
async def client(tmp_path):
    registry = TenantStoreRegistry(tmp_path / "stores")
    pool = FetchPool(concurrency=2, max_urls=5, transport=httpx.MockTransport(_site))
    aggregator = JobAggregator([StaticSource()], transport=httpx.MockTransport(_site))

    app = create_app(registry, pool, aggregator)
    async with TestClient(TestServer(app)) as test_client:
        yield test_client


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/health")

    assert resp.status == 200
    assert await resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_crawl_then_list_and_search(client):
    resp = await client.post(
        "/api/crawl",
        json={"chatId": 7, "urls": ["http://site.test/a", "http://site.test/down"]},
    )
    assert resp.status == 200
    items = (await resp.json())["items"]
    by_url = {item["url"]: item for item in items}
    assert by_url["http://site.test/a"]["status"] == "ok"
    assert "contentHash" in by_url["http://site.test/a"]
    assert by_url["http://site.test/down"] == {
        "url": "http://site.test/down",
        "status": "failed",
        "statusCode": 502,
        "reason": "http_status_502",
    }

    listed = await (await client.get("/api/pages", params={"chatId": "7"})).json()
    assert [page["url"] for page in listed["items"]] == ["http://site.test/a"]

    found = await (await client.get("/api/pages/search", params={"chatId": "7", "q": "python"})).json()
    assert len(found["items"]) == 1

    ranked = await (
        await client.get("/api/pages/search", params={"chatId": "7", "q": "python", "sort": "relevance"})
    ).json()
    assert ranked["items"][0]["score"] > 0

    other = await (await client.get("/api/pages/all", params={"chatId": "8"})).json()
    assert other == {"items": [], "total": 0}


@pytest.mark.asyncio
async def test_crawl_rejects_oversized_batches(client):
    resp = await client.post("/api/crawl", json={"urls": [f"http://site.test/{i}" for i in range(6)]})

    assert resp.status == 400
    assert "too many urls" in (await resp.json())["error"]


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"urls": "http://site.test/a"}, {"urls": []}])
async def test_crawl_rejects_bad_bodies(client, body):
    resp = await client.post("/api/crawl", json=body)

    assert resp.status == 400


@pytest.mark.asyncio
async def test_non_json_body_is_a_bad_request(client):
    resp = await client.post("/api/crawl", data="not json", headers={"Content-Type": "application/json"})

    assert resp.status == 400


@pytest.mark.asyncio
async def test_preview_does_not_store(client):
    resp = await client.post(
        "/api/preview",
        json={"urls": ["http://site.test/a", "http://site.test/b"], "query": "role at /b"},
    )

    items = (await resp.json())["items"]
    assert [item["url"] for item in items] == ["http://site.test/b"]
    assert items[0]["title"] == "Doc /b"

    stored = await (await client.get("/api/pages/all")).json()
    assert stored["total"] == 0


@pytest.mark.asyncio
async def test_save_and_get_page(client):
    resp = await client.post(
        "/api/pages",
        json={"chatId": "abc", "url": "https://manual.test", "title": "Notes", "content": "kept by hand"},
    )
    assert resp.status == 201
    saved = await resp.json()
    assert set(saved) == {"id", "contentHash"}

    page = await (await client.get(f"/api/pages/{saved['id']}", params={"chatId": "abc"})).json()
    assert page["title"] == "Notes"
    assert page["status_code"] is None

    missing = await client.get(f"/api/pages/{saved['id']}", params={"chatId": "someone-else"})
    assert missing.status == 404


@pytest.mark.asyncio
async def test_save_requires_url_and_content(client):
    resp = await client.post("/api/pages", json={"url": "https://manual.test", "content": ""})

    assert resp.status == 400


@pytest.mark.asyncio
async def test_filter_preview_and_delete(client):
    for i, text in enumerate(["react guide", "deprecated react", "vue guide"]):
        await client.post("/api/pages", json={"url": f"https://f.test/{i}", "content": text})

    preview = await (
        await client.post("/api/pages/filter-preview", json={"include": ["react"], "exclude": ["deprecated"]})
    ).json()
    assert preview["total"] == 1
    assert preview["items"][0]["url"] == "https://f.test/0"

    deleted = await (
        await client.post("/api/pages/filter-delete", json={"include": ["react"], "exclude": ["deprecated"]})
    ).json()
    assert deleted == {"deletedCount": 1, "deletedIds": [preview["items"][0]["id"]]}

    empty = await client.post("/api/pages/filter-delete", json={"include": [], "exclude": []})
    assert empty.status == 400


@pytest.mark.asyncio
async def test_job_search(client):
    resp = await client.get("/api/jobs/search", params={"q": "python"})
    body = await resp.json()

    assert resp.status == 200
    assert body["items"][0]["title"] == "python developer"
    assert body["perSourceCounts"] == {"static": 1}
    assert body["failedCount"] == 0
    assert body["cacheHit"] is False

    again = await (await client.get("/api/jobs/search", params={"q": "python"})).json()
    assert again["cacheHit"] is True

    missing = await client.get("/api/jobs/search")
    assert missing.status == 400


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    await client.get("/api/health")
    resp = await client.get("/metrics")

    assert resp.status == 200
    assert "webvault_fetch_in_flight" in await resp.text()
