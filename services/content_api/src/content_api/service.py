from __future__ import annotations

import json
import logging
import math

from common.utils import clean_labels, now_utc_iso

from content_api.analytics import (
    DEFAULT_POPULAR_LIMIT,
    DEFAULT_RELATED_LIMIT,
    compute_related_tags,
    popular_tags,
    rank_related,
    record_view,
    tag_usage_counts,
)
from content_api.categories import is_known_category
from content_api.errors import (
    ArticleNotFoundError,
    DuplicateSlugError,
    InvalidCategoryError,
    PositionNotFoundError,
)
from content_api.models import (
    Article,
    ArticleCreateRequest,
    ArticleListResponse,
    ArticleQuery,
    ArticleUpdateRequest,
    Position,
    PositionCreateRequest,
    PositionUpdateRequest,
    RelatedArticle,
    RelatedTagsBatchRefresh,
    RelatedTagsRefresh,
    TagCount,
    TagViews,
)
from content_api.repository import ContentRepository

LOGGER = logging.getLogger("content_api.service")
ALL_FILTER_VALUE = "all"


def ensure_category(category: str) -> None:
    if not is_known_category(category):
        raise InvalidCategoryError(category)


class ArticleService:
    def __init__(
        self,
        repository: ContentRepository,
        *,
        related_same_category: bool = False,
    ) -> None:
        self.repository = repository
        self.related_same_category = related_same_category

    def create(self, payload: ArticleCreateRequest) -> Article:
        ensure_category(payload.category)
        if self.repository.find_article(payload.slug) is not None:
            raise DuplicateSlugError(payload.slug)

        values = payload.model_dump(mode="json")
        values["tags"] = clean_labels(values["tags"])
        article = self.repository.insert_article(values)
        LOGGER.info(json.dumps({"event": "article_created", "slug": article.slug}))
        return article

    def list_articles(
        self,
        *,
        page: int = 1,
        limit: int = 10,
        published: bool | None = None,
        tag: str | None = None,
        category: str | None = None,
        author: str | None = None,
        search_term: str | None = None,
    ) -> ArticleListResponse:
        query = ArticleQuery(
            published=published,
            tag=tag,
            category=category,
            author=author,
            search_term=search_term,
        )
        skip = (page - 1) * limit
        articles = self.repository.find_articles(query, skip=skip, limit=limit)
        total = self.repository.count_articles(query)
        return ArticleListResponse(
            articles=articles,
            total=total,
            page=page,
            total_pages=math.ceil(total / limit),
        )

    def get_or_raise(self, slug: str) -> Article:
        article = self.repository.find_article(slug)
        if article is None:
            raise ArticleNotFoundError(slug)
        return article

    def load_for_view(self, slug: str) -> Article:
        return self.get_or_raise(slug)

    def commit_view(self, article: Article) -> Article:
        # No version check: a concurrent view of the same article can be lost.
        viewed = record_view(article)
        updated = self.repository.update_article(
            article.slug,
            {"tag_views": viewed.tag_views},
            touch=False,
        )
        if updated is None:
            raise ArticleNotFoundError(article.slug)
        LOGGER.info(
            json.dumps(
                {"event": "article_viewed", "slug": updated.slug, "tags": len(article.tags)}
            )
        )
        return updated

    def view(self, slug: str) -> Article:
        return self.commit_view(self.load_for_view(slug))

    def update(self, slug: str, payload: ArticleUpdateRequest) -> Article:
        changes = payload.model_dump(mode="json", exclude_unset=True)
        if "category" in changes:
            ensure_category(changes["category"])
        if "tags" in changes:
            changes["tags"] = clean_labels(changes["tags"])

        current = self.get_or_raise(slug)
        new_slug = changes.get("slug")
        if new_slug and new_slug != current.slug:
            if self.repository.find_article(new_slug) is not None:
                raise DuplicateSlugError(new_slug)
        if not changes:
            return current

        updated = self.repository.update_article(slug, changes)
        if updated is None:
            raise ArticleNotFoundError(slug)
        LOGGER.info(
            json.dumps(
                {
                    "event": "article_updated",
                    "slug": updated.slug,
                    "fields": sorted(changes),
                }
            )
        )
        return updated

    def delete(self, slug: str) -> None:
        if not self.repository.delete_article(slug):
            raise ArticleNotFoundError(slug)
        LOGGER.info(json.dumps({"event": "article_deleted", "slug": slug}))

    def candidate_pool(self, article: Article) -> list[Article]:
        if not article.tags:
            return []
        query = ArticleQuery(
            published=True,
            tags_any=tuple(dict.fromkeys(article.tags)),
            category=article.category if self.related_same_category else None,
            exclude_slug=article.slug,
        )
        return self.repository.find_articles(query, newest_first=False)

    def related_articles(
        self,
        slug: str,
        limit: int = DEFAULT_RELATED_LIMIT,
    ) -> list[RelatedArticle]:
        # Ranking neighbours is not a read of the seed: its tag views stay as they are.
        article = self.get_or_raise(slug)
        if limit <= 0:
            return []
        return rank_related(article, self.candidate_pool(article), limit)

    def refresh_related_tags(self, slug: str) -> RelatedTagsRefresh:
        article = self.get_or_raise(slug)
        return self._refresh_related_tags(article)

    def refresh_all_related_tags(self) -> RelatedTagsBatchRefresh:
        articles = self.repository.find_articles(ArticleQuery(), newest_first=False)
        refreshed = 0
        for article in articles:
            try:
                self._refresh_related_tags(article)
            except ArticleNotFoundError:
                # Deleted while the batch was running.
                continue
            refreshed += 1
        return RelatedTagsBatchRefresh(refreshed=refreshed, refreshed_at=now_utc_iso())

    def tags_with_counts(self) -> list[TagCount]:
        return tag_usage_counts(self._published_articles())

    def popular_tags(self, limit: int = DEFAULT_POPULAR_LIMIT) -> list[TagViews]:
        return popular_tags(self._published_articles(), limit)

    def _refresh_related_tags(self, article: Article) -> RelatedTagsRefresh:
        candidates = self.candidate_pool(article)
        related = compute_related_tags(article, candidates)
        updated = self.repository.update_article(
            article.slug,
            {"related_tags": related},
            touch=False,
        )
        if updated is None:
            raise ArticleNotFoundError(article.slug)
        LOGGER.info(
            json.dumps(
                {
                    "event": "related_tags_refreshed",
                    "slug": article.slug,
                    "candidates": len(candidates),
                    "related_tags": len(related),
                }
            )
        )
        return RelatedTagsRefresh(
            slug=article.slug,
            candidate_count=len(candidates),
            related_tags=related,
            refreshed_at=now_utc_iso(),
        )

    def _published_articles(self) -> list[Article]:
        return self.repository.find_articles(ArticleQuery(published=True), newest_first=False)


class PositionService:
    def __init__(self, repository: ContentRepository) -> None:
        self.repository = repository

    def create(self, payload: PositionCreateRequest) -> Position:
        values = payload.model_dump()
        values["requirements"] = clean_labels(values["requirements"])
        position = self.repository.insert_position(values)
        LOGGER.info(json.dumps({"event": "position_created", "position_id": position.id}))
        return position

    def list_positions(
        self,
        *,
        department: str | None = None,
        type: str | None = None,
        location: str | None = None,
    ) -> list[Position]:
        filters = {
            key: value
            for key, value in (("department", department), ("type", type), ("location", location))
            if value and value != ALL_FILTER_VALUE
        }
        return self.repository.list_positions(filters)

    def search(self, text: str) -> list[Position]:
        return self.repository.search_positions(text)

    def get_or_raise(self, position_id: str) -> Position:
        position = self.repository.get_position(position_id)
        if position is None:
            raise PositionNotFoundError(position_id)
        return position

    def update(self, position_id: str, payload: PositionUpdateRequest) -> Position:
        changes = payload.model_dump(exclude_unset=True)
        if "requirements" in changes:
            changes["requirements"] = clean_labels(changes["requirements"])
        if not changes:
            return self.get_or_raise(position_id)
        position = self.repository.update_position(position_id, changes)
        if position is None:
            raise PositionNotFoundError(position_id)
        return position

    def delete(self, position_id: str) -> Position:
        position = self.repository.delete_position(position_id)
        if position is None:
            raise PositionNotFoundError(position_id)
        LOGGER.info(json.dumps({"event": "position_deleted", "position_id": position_id}))
        return position
