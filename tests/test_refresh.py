"""Tests for periodic and incremental related-cache refresh."""

import asyncio
from datetime import datetime, timezone

import pytest

from search_service.models import SearchMode, SearchResponse
from search_service.refresh import RelatedRefresher, stale_cutoff
from tests.conftest import TENANT, Article, build_stack, hit

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
OLD = datetime(2024, 5, 1, tzinfo=timezone.utc)
RECENT = datetime(2024, 5, 31, tzinfo=timezone.utc)


class FakeSearchManager:
    """Records refresh requests; fails for selected article ids."""

    def __init__(self, fail_ids=(), delay=0.0):
        self.fail_ids = set(fail_ids)
        self.delay = delay
        self.requests = []
        self.active = 0
        self.max_active = 0

    async def search(self, request):
        self.requests.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if request.article_id in self.fail_ids:
                raise RuntimeError(f"embedding failed for {request.article_id}")
            return SearchResponse(mode=SearchMode.RELATED, limit=request.limit, cached=False)
        finally:
            self.active -= 1


def cache_row(updated_at, related_id=1):
    return {"related_article_id": related_id, "score": 0.9, "updated_at": updated_at}


async def refresher_for(manager, **kwargs):
    stack = await build_stack()
    refresher = RelatedRefresher(
        manager,
        stack.cache,
        stack.articles,
        stack.semantic,
        clock=lambda: NOW,
        **kwargs,
    )
    return refresher, stack


def test_stale_cutoff():
    assert stale_cutoff(7, NOW) == datetime(2024, 5, 25, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_refresh_article_bypasses_and_rewrites_cache():
    manager = FakeSearchManager()
    refresher, _ = await refresher_for(manager, related_limit=5)

    await refresher.refresh_article(42, TENANT)

    request = manager.requests[0]
    assert request.mode == SearchMode.RELATED
    assert request.article_id == 42
    assert request.limit == 5
    assert request.use_cache is False
    assert request.refresh_cache is True


@pytest.mark.asyncio
async def test_refresh_stale_only_touches_old_caches():
    manager = FakeSearchManager()
    refresher, stack = await refresher_for(manager)
    stack.cache.rows = {10: [cache_row(OLD)], 20: [cache_row(RECENT)], 30: [cache_row(OLD)]}

    results = await refresher.refresh_stale(TENANT, stale_days=7, limit=50)

    assert sorted(r.article_id for r in results) == [10, 30]
    assert all(r.success for r in results)


@pytest.mark.asyncio
async def test_one_failure_does_not_abort_the_batch():
    manager = FakeSearchManager(fail_ids={10})
    refresher, stack = await refresher_for(manager)
    stack.cache.rows = {10: [cache_row(OLD)], 30: [cache_row(OLD)]}

    results = await refresher.refresh_stale(TENANT)

    by_id = {r.article_id: r for r in results}
    assert by_id[10].success is False
    assert "embedding failed" in by_id[10].error
    assert by_id[30].success is True


@pytest.mark.asyncio
async def test_refresh_stale_with_nothing_stale():
    manager = FakeSearchManager()
    refresher, stack = await refresher_for(manager)
    stack.cache.rows = {20: [cache_row(RECENT)]}

    assert await refresher.refresh_stale(TENANT) == []
    assert manager.requests == []


@pytest.mark.asyncio
async def test_refresh_many_bounds_concurrency_and_keeps_order():
    manager = FakeSearchManager(delay=0.01)
    refresher, _ = await refresher_for(manager, concurrency=2)

    results = await refresher.refresh_many([5, 4, 3, 2, 1], TENANT)

    assert [r.article_id for r in results] == [5, 4, 3, 2, 1]
    assert manager.max_active == 2


@pytest.mark.asyncio
async def test_refresh_neighbours_skips_self_and_weak_matches():
    articles = [Article(42, "New paper", content="diffusion models")] + [Article(i, f"Paper {i}") for i in (1, 2, 3)]
    stack = await build_stack(articles, [hit(42, 0.99), hit(1, 0.9), hit(2, 0.6), hit(3, 0.3)])
    refresher = RelatedRefresher(stack.manager, stack.cache, stack.articles, stack.semantic, clock=lambda: NOW)

    refreshed = await refresher.refresh_neighbours(42, TENANT, top_n=10, min_score=0.5)

    assert sorted(refreshed) == [1, 2]
    assert sorted(stack.cache.replace_calls) == [1, 2]
    assert 42 not in stack.cache.rows


@pytest.mark.asyncio
async def test_refresh_neighbours_for_unknown_article():
    stack = await build_stack(hits=[hit(1, 0.9)])
    refresher = RelatedRefresher(stack.manager, stack.cache, stack.articles, stack.semantic)

    assert await refresher.refresh_neighbours(99, TENANT) == []
    assert stack.embedding.calls == []
