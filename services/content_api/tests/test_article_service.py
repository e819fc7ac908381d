from __future__ import annotations

import asyncio

import pytest
from content_api.errors import ArticleNotFoundError, DuplicateSlugError, InvalidCategoryError
from content_api.models import ArticleCreateRequest, ArticleUpdateRequest
from content_api.repository import ContentRepository
from content_api.service import ArticleService
from fastapi.concurrency import run_in_threadpool

pytestmark = pytest.mark.integration


@pytest.fixture
def service(repository: ContentRepository) -> ArticleService:
    return ArticleService(repository)


def create(service: ArticleService, article_payload, slug: str, **overrides) -> None:
    service.create(ArticleCreateRequest(**article_payload(slug, **overrides)))


def test_view_twice_accumulates_tag_views(service: ArticleService, article_payload) -> None:
    create(service, article_payload, "x", tags=["go", "backend"])

    service.view("x")
    viewed = service.view("x")

    assert viewed.tag_views == {"go": 2, "backend": 2}
    assert service.get_or_raise("x").tag_views == {"go": 2, "backend": 2}


def test_view_of_missing_article_raises_not_found(service: ArticleService) -> None:
    with pytest.raises(ArticleNotFoundError):
        service.view("missing")


def test_interleaved_views_lose_an_increment(service: ArticleService, article_payload) -> None:
    create(service, article_payload, "x", tags=["go"])

    first = service.load_for_view("x")
    second = service.load_for_view("x")
    service.commit_view(first)
    result = service.commit_view(second)

    assert result.tag_views == {"go": 1}


@pytest.mark.asyncio
async def test_concurrent_views_never_overcount(service: ArticleService, article_payload) -> None:
    create(service, article_payload, "x", tags=["go", "api"])

    await asyncio.gather(*(run_in_threadpool(service.view, "x") for _ in range(20)))

    tag_views = service.get_or_raise("x").tag_views
    assert set(tag_views) == {"go", "api"}
    assert tag_views["go"] == tag_views["api"]
    assert 1 <= tag_views["go"] <= 20


def test_create_rejects_unknown_category(service: ArticleService, article_payload) -> None:
    with pytest.raises(InvalidCategoryError):
        create(service, article_payload, "x", category="Gardening")


def test_create_rejects_duplicate_slug(service: ArticleService, article_payload) -> None:
    create(service, article_payload, "x")

    with pytest.raises(DuplicateSlugError):
        create(service, article_payload, "x")


def test_update_rename_to_taken_slug_raises(service: ArticleService, article_payload) -> None:
    create(service, article_payload, "a")
    create(service, article_payload, "b")

    with pytest.raises(DuplicateSlugError):
        service.update("a", ArticleUpdateRequest(slug="b"))


def test_update_does_not_count_as_a_view(service: ArticleService, article_payload) -> None:
    create(service, article_payload, "a", tags=["go"])

    updated = service.update("a", ArticleUpdateRequest(tags=["go", "rust"], category="Database"))

    assert updated.tags == ["go", "rust"]
    assert updated.category == "Database"
    assert updated.tag_views == {}


def test_update_rejects_unknown_category(service: ArticleService, article_payload) -> None:
    create(service, article_payload, "a")

    with pytest.raises(InvalidCategoryError):
        service.update("a", ArticleUpdateRequest(category="Cooking"))


def test_related_articles_uses_published_tag_neighbours(
    service: ArticleService,
    article_payload,
) -> None:
    create(service, article_payload, "a", tags=["x", "y"])
    create(service, article_payload, "b", tags=["x"])
    create(service, article_payload, "c", tags=["y", "z"])
    create(service, article_payload, "draft", tags=["x", "y"], published=False)
    create(service, article_payload, "unrelated", tags=["q"])

    related = service.related_articles("a", 2)

    assert [item.slug for item in related] == ["b", "c"]
    assert [item.relevance for item in related] == [0.5, 0.5]
    assert service.get_or_raise("a").tag_views == {}


def test_related_articles_for_untagged_article_is_empty(
    service: ArticleService,
    article_payload,
) -> None:
    create(service, article_payload, "empty", tags=[])
    create(service, article_payload, "b", tags=["x"])

    assert service.related_articles("empty") == []


def test_related_articles_missing_seed_raises(service: ArticleService) -> None:
    with pytest.raises(ArticleNotFoundError):
        service.related_articles("missing", 0)


def test_same_category_policy_restricts_candidates(
    repository: ContentRepository,
    article_payload,
) -> None:
    scoped = ArticleService(repository, related_same_category=True)
    create(scoped, article_payload, "a", tags=["x"], category="DevOps")
    create(scoped, article_payload, "b", tags=["x", "k8s"], category="DevOps")
    create(scoped, article_payload, "c", tags=["x", "css"], category="Web Design")

    assert [item.slug for item in scoped.related_articles("a")] == ["b"]
    assert scoped.refresh_related_tags("a").related_tags == {"k8s": 1.0}
    assert [item.slug for item in ArticleService(repository).related_articles("a")] == ["b", "c"]


def test_refresh_related_tags_persists_weights(service: ArticleService, article_payload) -> None:
    create(service, article_payload, "a", tags=["x"])
    create(service, article_payload, "b", tags=["x", "docker"])
    create(service, article_payload, "c", tags=["x", "docker", "helm"])

    refreshed = service.refresh_related_tags("a")

    assert refreshed.candidate_count == 2
    assert refreshed.related_tags == {"docker": 1.0, "helm": 0.5}
    assert service.get_or_raise("a").related_tags == {"docker": 1.0, "helm": 0.5}


def test_refresh_related_tags_without_neighbours_is_empty(
    service: ArticleService,
    article_payload,
) -> None:
    create(service, article_payload, "lonely", tags=["solo"])

    assert service.refresh_related_tags("lonely").related_tags == {}


def test_refresh_all_related_tags_covers_every_article(
    service: ArticleService,
    article_payload,
) -> None:
    create(service, article_payload, "a", tags=["x", "y"])
    create(service, article_payload, "b", tags=["x"])

    batch = service.refresh_all_related_tags()

    assert batch.refreshed == 2
    assert service.get_or_raise("b").related_tags == {"y": 1.0}


def test_tag_reports_ignore_unpublished_articles(
    service: ArticleService,
    article_payload,
) -> None:
    create(service, article_payload, "a", tags=["go", "rust"])
    create(service, article_payload, "draft", tags=["go"], published=False)
    service.view("a")
    service.view("draft")

    counts = service.tags_with_counts()

    assert [(item.tag, item.count) for item in counts] == [("go", 1), ("rust", 1)]
    assert service.tags_with_counts() == counts
    assert [(item.tag, item.views) for item in service.popular_tags()] == [("go", 1), ("rust", 1)]


def test_list_articles_reports_pagination(service: ArticleService, article_payload) -> None:
    for index in range(5):
        create(service, article_payload, f"post-{index}", author="Sam")
    create(service, article_payload, "other", author="Alex")

    page = service.list_articles(page=2, limit=2, author="Sam")

    assert page.total == 5
    assert page.page == 2
    assert page.total_pages == 3
    assert [article.slug for article in page.articles] == ["post-2", "post-1"]


def test_related_lookups_do_not_count_as_views(
    service: ArticleService,
    article_payload,
) -> None:
    create(service, article_payload, "seed", tags=["x", "y"])
    create(service, article_payload, "neighbour", tags=["x"])
    service.view("seed")

    service.related_articles("seed")
    service.related_articles("seed", 5)

    assert service.get_or_raise("seed").tag_views == {"x": 1, "y": 1}
    assert service.get_or_raise("neighbour").tag_views == {}
