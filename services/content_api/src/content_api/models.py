from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, Field, HttpUrl, model_validator

SLUG_PATTERN = r"^[a-zA-Z0-9_-]+$"


class SeoMetadata(BaseModel):
    meta_title: str = Field(..., min_length=1)
    meta_description: str = Field(..., min_length=1)
    meta_keywords: list[str] = Field(..., min_length=1)


class ArticleCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    slug: str = Field(..., min_length=1, max_length=200, pattern=SLUG_PATTERN)
    content: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)
    category: str
    author: str = Field(..., min_length=1, max_length=120)
    published: bool = False
    image_url: HttpUrl | None = None
    seo: SeoMetadata


class ArticleUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=300)
    slug: str | None = Field(default=None, min_length=1, max_length=200, pattern=SLUG_PATTERN)
    content: str | None = Field(default=None, min_length=1)
    description: str | None = Field(default=None, min_length=1)
    tags: list[str] | None = None
    category: str | None = None
    author: str | None = Field(default=None, min_length=1, max_length=120)
    published: bool | None = None
    image_url: HttpUrl | None = None
    seo: SeoMetadata | None = None

    @model_validator(mode="after")
    def reject_null_required_fields(self) -> ArticleUpdateRequest:
        nullable = {"image_url"}
        for field_name in self.model_fields_set - nullable:
            if getattr(self, field_name) is None:
                raise ValueError(f"{field_name} cannot be null.")
        return self


class Article(BaseModel):
    slug: str
    title: str
    content: str
    description: str
    tags: list[str] = Field(default_factory=list)
    category: str
    author: str
    published: bool = False
    image_url: str | None = None
    seo: SeoMetadata
    tag_views: dict[str, int] = Field(default_factory=dict)
    related_tags: dict[str, float] = Field(default_factory=dict)
    created_at: str
    updated_at: str


class RelatedArticle(Article):
    relevance: float


class ArticleListResponse(BaseModel):
    articles: list[Article]
    total: int
    page: int
    total_pages: int


class TagCount(BaseModel):
    tag: str
    count: int


class TagViews(BaseModel):
    tag: str
    views: int


class RelatedTagsRefresh(BaseModel):
    slug: str
    candidate_count: int
    related_tags: dict[str, float]
    refreshed_at: str


class RelatedTagsBatchRefresh(BaseModel):
    refreshed: int
    refreshed_at: str


@dataclass(frozen=True)
class ArticleQuery:
    published: bool | None = None
    tag: str | None = None
    tags_any: tuple[str, ...] | None = None
    category: str | None = None
    author: str | None = None
    search_term: str | None = None
    exclude_slug: str | None = None


class PositionCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    department: str = Field(..., min_length=1, max_length=120)
    type: str = Field(..., min_length=1, max_length=60)
    location: str = Field(..., min_length=1, max_length=120)
    experience: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1)
    requirements: list[str] = Field(..., min_length=1)


class PositionUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    department: str | None = Field(default=None, min_length=1, max_length=120)
    type: str | None = Field(default=None, min_length=1, max_length=60)
    location: str | None = Field(default=None, min_length=1, max_length=120)
    experience: str | None = Field(default=None, min_length=1, max_length=120)
    description: str | None = Field(default=None, min_length=1)
    requirements: list[str] | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def reject_null_fields(self) -> PositionUpdateRequest:
        for field_name in self.model_fields_set:
            if getattr(self, field_name) is None:
                raise ValueError(f"{field_name} cannot be null.")
        return self


class Position(BaseModel):
    id: str
    title: str
    department: str
    type: str
    location: str
    experience: str
    description: str
    requirements: list[str]
    created_at: str
    updated_at: str
