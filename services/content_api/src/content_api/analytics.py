"""Tag view accounting, related-tag weighting and related-article ranking.

Every function here is pure: it takes article records and returns new values.
Reading candidates from the store and persisting results is the caller's job.
"""

from __future__ import annotations

from collections.abc import Iterable

from content_api.models import Article, RelatedArticle, TagCount, TagViews

DEFAULT_RELATED_LIMIT = 3
DEFAULT_POPULAR_LIMIT = 5


def record_view(article: Article) -> Article:
    tag_views = dict(article.tag_views)
    # Duplicate tags count once per occurrence.
    for tag in article.tags:
        tag_views[tag] = tag_views.get(tag, 0) + 1
    return article.model_copy(update={"tag_views": tag_views})


def _candidate_pool(article: Article, candidates: Iterable[Article]) -> list[Article]:
    own_tags = set(article.tags)
    # An untagged article keeps every candidate; each one then scores 0.
    return [
        candidate
        for candidate in candidates
        if candidate.published
        and candidate.slug != article.slug
        and (not own_tags or own_tags.intersection(candidate.tags))
    ]


def compute_related_tags(article: Article, candidates: Iterable[Article]) -> dict[str, float]:
    """Weight each neighbouring tag by the share of candidates that carry it.

    Tags the article already has are skipped. An empty pool yields an empty mapping.
    """
    pool = _candidate_pool(article, candidates)
    if not pool:
        return {}

    own_tags = set(article.tags)
    counts: dict[str, int] = {}
    for candidate in pool:
        for tag in dict.fromkeys(candidate.tags):
            if tag in own_tags:
                continue
            counts[tag] = counts.get(tag, 0) + 1

    ordered = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return {tag: round(count / len(pool), 4) for tag, count in ordered}


def score_relevance(article: Article, candidate: Article) -> float:
    own_tags = set(article.tags)
    if not own_tags:
        return 0.0
    return len(own_tags.intersection(candidate.tags)) / len(own_tags)


def rank_related(
    article: Article,
    candidates: Iterable[Article],
    limit: int = DEFAULT_RELATED_LIMIT,
) -> list[RelatedArticle]:
    """Order candidates by tag overlap with ``article``, highest first.

    The sort is stable, so equally relevant candidates keep the order they were
    passed in. The article itself, unpublished candidates and candidates sharing no
    tag with a tagged article are never returned.
    """
    if limit <= 0:
        return []

    scored = [
        RelatedArticle(
            **candidate.model_dump(),
            relevance=round(score_relevance(article, candidate), 4),
        )
        for candidate in _candidate_pool(article, candidates)
    ]
    scored.sort(key=lambda item: item.relevance, reverse=True)
    return scored[:limit]


def tag_usage_counts(articles: Iterable[Article]) -> list[TagCount]:
    counts: dict[str, int] = {}
    for article in articles:
        if not article.published:
            continue
        for tag in dict.fromkeys(article.tags):
            counts[tag] = counts.get(tag, 0) + 1

    ordered = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [TagCount(tag=tag, count=count) for tag, count in ordered]


def popular_tags(
    articles: Iterable[Article],
    limit: int = DEFAULT_POPULAR_LIMIT,
) -> list[TagViews]:
    if limit <= 0:
        return []

    totals: dict[str, int] = {}
    for article in articles:
        if not article.published:
            continue
        for tag, views in article.tag_views.items():
            totals[tag] = totals.get(tag, 0) + views

    ordered = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [TagViews(tag=tag, views=views) for tag, views in ordered[:limit]]
