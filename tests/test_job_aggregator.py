import asyncio

import httpx
import pytest

from webvault.errors import InputValidationError
from webvault.jobs.aggregator import JobAggregator, dedup_key, merge_postings
from webvault.jobs.models import JobPosting
from webvault.jobs.sources import JobSource


class FakeSource(JobSource):
    def __init__(self, name, postings=None, error=None, delay=0.0):
        self.name = name
        self.postings = postings or []
        self.error = error
        self.delay = delay
        self.calls = 0

    async def search(self, client, query, limit):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.postings[:limit]


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _posting(source, n, url=None):
    return JobPosting(title=f"Job {n}", source=source, url=url or f"https://{source}.test/{n}", company="Co")


def _aggregator(sources, **kwargs):
    offline = httpx.MockTransport(lambda request: httpx.Response(500))
    return JobAggregator(sources, transport=offline, **kwargs)


@pytest.mark.asyncio
async def test_partial_failure_returns_the_successful_sources():
    sources = [
        FakeSource("a", [_posting("a", 1), _posting("a", 2)]),
        FakeSource("b", error=RuntimeError("bad gateway")),
        FakeSource("c", [_posting("c", 1)]),
        FakeSource("d", [_posting("d", 1)]),
        FakeSource("e", error=httpx.ConnectError("refused")),
        FakeSource("f", []),
    ]

    result = await _aggregator(sources).search("python")

    assert len(result.items) == 4
    assert result.failed_count == 2
    assert set(result.failed_sources) == {"b", "e"}
    assert result.failed_sources["b"] == "bad gateway"
    assert result.per_source_counts == {"a": 2, "b": 0, "c": 1, "d": 1, "e": 0, "f": 0}
    assert result.cache_hit is False


@pytest.mark.asyncio
async def test_slow_sources_time_out_without_blocking_the_rest():
    sources = [FakeSource("fast", [_posting("fast", 1)]), FakeSource("slow", [_posting("slow", 1)], delay=1.0)]

    result = await _aggregator(sources, source_timeout=0.05).search("python")

    assert [p.source for p in result.items] == ["fast"]
    assert result.failed_sources == {"slow": "timeout"}


@pytest.mark.asyncio
async def test_all_sources_failing_is_not_an_error_and_is_not_cached():
    sources = [FakeSource("a", error=RuntimeError("x")), FakeSource("b", error=RuntimeError("y"))]
    aggregator = _aggregator(sources)

    first = await aggregator.search("python")
    second = await aggregator.search("python")

    assert first.items == []
    assert first.failed_count == 2
    assert second.cache_hit is False
    assert sources[0].calls == 2


@pytest.mark.asyncio
async def test_repeat_queries_are_served_from_cache():
    source = FakeSource("a", [_posting("a", 1), _posting("a", 2)])
    aggregator = _aggregator([source])

    first = await aggregator.search("Python")
    second = await aggregator.search("  python ")

    assert first.cache_hit is False
    assert second.cache_hit is True
    assert second.items == first.items
    assert source.calls == 1


@pytest.mark.asyncio
async def test_cache_entries_expire_after_the_ttl():
    clock = FakeClock()
    source = FakeSource("a", [_posting("a", 1)])
    aggregator = _aggregator([source], cache_ttl=300, clock=clock)

    await aggregator.search("python")
    clock.now += 299
    assert (await aggregator.search("python")).cache_hit is True

    clock.now += 2
    result = await aggregator.search("python")
    assert result.cache_hit is False
    assert source.calls == 2


@pytest.mark.asyncio
async def test_invalidate_forces_a_fresh_fan_out():
    source = FakeSource("a", [_posting("a", 1)])
    aggregator = _aggregator([source])

    await aggregator.search("python")
    aggregator.invalidate("PYTHON")
    await aggregator.search("python")

    assert source.calls == 2


@pytest.mark.asyncio
async def test_limit_slices_the_cached_batch():
    source = FakeSource("a", [_posting("a", n) for n in range(10)])
    aggregator = _aggregator([source])

    small = await aggregator.search("python", limit=3)
    large = await aggregator.search("python", limit=8)

    assert len(small.items) == 3
    assert len(large.items) == 8
    assert large.cache_hit is True
    assert source.calls == 1


@pytest.mark.asyncio
async def test_limit_applies_per_source():
    sources = [
        FakeSource("a", [_posting("a", n) for n in range(5)]),
        FakeSource("b", [_posting("b", n) for n in range(5)]),
    ]
    aggregator = _aggregator(sources)

    result = await aggregator.search("python", limit=2)

    assert [(p.source, p.title) for p in result.items] == [
        ("a", "Job 0"),
        ("a", "Job 1"),
        ("b", "Job 0"),
        ("b", "Job 1"),
    ]
    assert result.per_source_counts == {"a": 2, "b": 2}

    wider = await aggregator.search("python", limit=4)
    assert wider.cache_hit is True
    assert wider.per_source_counts == {"a": 4, "b": 4}
    assert len(wider.items) == 8


@pytest.mark.asyncio
async def test_duplicates_across_sources_keep_the_first_occurrence():
    shared = "https://jobs.test/shared/"
    sources = [
        FakeSource("a", [_posting("a", 1, url=shared)]),
        FakeSource("b", [_posting("b", 1, url="HTTPS://JOBS.test/shared?utm_source=feed"), _posting("b", 2)]),
    ]

    result = await _aggregator(sources).search("python")

    assert [p.source for p in result.items] == ["a", "b"]
    assert result.per_source_counts == {"a": 1, "b": 2}


@pytest.mark.asyncio
async def test_concurrent_identical_queries_share_one_fan_out():
    source = FakeSource("a", [_posting("a", 1)], delay=0.05)
    aggregator = _aggregator([source])

    results = await asyncio.gather(*(aggregator.search("python") for _ in range(5)))

    assert source.calls == 1
    assert all(r.items == results[0].items for r in results)
    assert sum(1 for r in results if not r.cache_hit) == 1


@pytest.mark.asyncio
async def test_joined_callers_of_an_uncached_fan_out_do_not_report_a_cache_hit():
    source = FakeSource("a", error=RuntimeError("down"), delay=0.05)
    aggregator = _aggregator([source])

    results = await asyncio.gather(*(aggregator.search("python") for _ in range(3)))

    assert source.calls == 1
    assert [r.cache_hit for r in results] == [False, False, False]
    assert all(r.failed_sources == {"a": "down"} for r in results)
    assert len(aggregator.cache) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   ", None])
async def test_empty_query_is_rejected(query):
    source = FakeSource("a", [_posting("a", 1)])

    with pytest.raises(InputValidationError):
        await _aggregator([source]).search(query)

    assert source.calls == 0


def test_dedup_key_falls_back_to_title_and_company():
    posting = JobPosting(title="Engineer", source="x", url=None, company="ACME")

    assert dedup_key(posting) == "engineer|acme"


def test_merge_postings_preserves_source_order():
    merged = merge_postings([[_posting("a", 2), _posting("a", 1)], [_posting("b", 1)]])

    assert [(p.source, p.title) for p in merged] == [("a", "Job 2"), ("a", "Job 1"), ("b", "Job 1")]
