from __future__ import annotations

from content_api.categories import CATEGORIES


class ContentApiError(Exception):
    pass


class NotFoundError(ContentApiError):
    pass


class ArticleNotFoundError(NotFoundError):
    def __init__(self, slug: str) -> None:
        super().__init__(f"Article not found: {slug}")
        self.slug = slug


class PositionNotFoundError(NotFoundError):
    def __init__(self, position_id: str) -> None:
        super().__init__(f"Position not found: {position_id}")
        self.position_id = position_id


class DuplicateSlugError(ContentApiError):
    def __init__(self, slug: str) -> None:
        super().__init__(f"Article with slug {slug!r} already exists")
        self.slug = slug


class InvalidCategoryError(ContentApiError):
    def __init__(self, category: str) -> None:
        super().__init__(
            f"Unknown category {category!r}; expected one of: {', '.join(CATEGORIES)}"
        )
        self.category = category
