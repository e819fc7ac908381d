from __future__ import annotations

import json
import logging
import os
import threading
import time
import uuid
from contextlib import asynccontextmanager

from common.utils import now_utc_iso
from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from content_api.analytics import DEFAULT_POPULAR_LIMIT, DEFAULT_RELATED_LIMIT
from content_api.errors import (
    ContentApiError,
    DuplicateSlugError,
    InvalidCategoryError,
    NotFoundError,
)
from content_api.models import (
    Article,
    ArticleCreateRequest,
    ArticleListResponse,
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
from content_api.repository import DEFAULT_DB_PATH, ContentRepository
from content_api.service import ArticleService, PositionService

API_PREFIX = "/api/v1"
LOGGER = logging.getLogger("content_api")


def parse_bool(raw: str | None) -> bool:
    return (raw or "").strip().lower() in ("1", "true", "yes", "on")


def parse_origins(raw: str | None) -> list[str]:
    origins = [origin.strip() for origin in (raw or "").split(",") if origin.strip()]
    return origins or ["*"]


def to_http_error(exc: ContentApiError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (DuplicateSlugError, InvalidCategoryError)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    endpoints: dict[str, dict[str, float | int]]


UNMATCHED_ROUTE = "unmatched"
STATUS_CLASSES = ("2xx", "3xx", "4xx", "5xx")


def route_template(request: Request) -> str:
    """Return the path template of the route that served ``request``.

    ``/api/v1/articles/{slug}`` stands for every slug, so the metrics map stays
    bounded by the route table. Requests no route matched share one entry.
    """
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


def _empty_endpoint_stats() -> dict[str, float | int]:
    stats: dict[str, float | int] = {"count": 0}
    stats.update({status_class: 0 for status_class in STATUS_CLASSES})
    stats.update({"latency_ms_sum": 0.0, "latency_ms_avg": 0.0})
    return stats


class MetricsStore:
    """Request counters per ``"<METHOD> <route template>"``."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._requests = 0
        self._errors = 0
        self._endpoints: dict[str, dict[str, float | int]] = {}

    def observe(self, *, method: str, route: str, status_code: int, duration_ms: float) -> None:
        status_class = f"{status_code // 100}xx"
        key = f"{method} {route}"
        with self._lock:
            self._requests += 1
            if status_code >= 400:
                self._errors += 1
            stats = self._endpoints.get(key)
            if stats is None:
                stats = self._endpoints[key] = _empty_endpoint_stats()
            stats["count"] = int(stats["count"]) + 1
            if status_class in stats:
                stats[status_class] = int(stats[status_class]) + 1
            stats["latency_ms_sum"] = float(stats["latency_ms_sum"]) + duration_ms
            stats["latency_ms_avg"] = round(float(stats["latency_ms_sum"]) / int(stats["count"]), 3)

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals={"requests": self._requests, "errors": self._errors},
                endpoints={key: dict(stats) for key, stats in self._endpoints.items()},
            )


def create_app(
    *,
    database_path: str | None = None,
    api_key: str | None = None,
    related_same_category: bool | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    resolved_path = database_path or os.getenv("CONTENT_API_DB_PATH", DEFAULT_DB_PATH)
    resolved_api_key = (api_key or os.getenv("CONTENT_API_KEY", "")).strip() or None
    resolved_same_category = (
        related_same_category
        if related_same_category is not None
        else parse_bool(os.getenv("CONTENT_API_RELATED_SAME_CATEGORY"))
    )
    resolved_origins = cors_origins or parse_origins(os.getenv("CONTENT_API_CORS_ORIGINS"))

    repository = ContentRepository(database_path=resolved_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        app.state.repository = repository
        app.state.articles = ArticleService(
            repository,
            related_same_category=resolved_same_category,
        )
        app.state.positions = PositionService(repository)
        app.state.api_key = resolved_api_key
        app.state.metrics = MetricsStore()
        try:
            yield
        finally:
            await run_in_threadpool(repository.close)

    app = FastAPI(title="Content API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=resolved_origins,
        allow_methods=["GET", "HEAD", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Authorization", "x-api-key", "x-request-id"],
        allow_credentials=True,
    )

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        def finish(status_code: int) -> dict[str, object]:
            duration_ms = (time.perf_counter() - started) * 1000
            route = route_template(request)
            request.app.state.metrics.observe(
                method=request.method,
                route=route,
                status_code=status_code,
                duration_ms=duration_ms,
            )
            return {
                "event": "request_complete",
                "request_id": request_id,
                "method": request.method,
                "route": route,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 3),
            }

        try:
            response = await call_next(request)
        except Exception as exc:
            LOGGER.exception(json.dumps({**finish(500), "error": str(exc)}))
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"x-request-id": request_id},
            )

        event = finish(response.status_code)
        event["source_ip"] = request.client.host if request.client else None
        response.headers["x-request-id"] = request_id
        LOGGER.info(json.dumps(event))
        return response

    def require_api_key(request: Request) -> None:
        expected: str | None = request.app.state.api_key
        if expected is None:
            return
        if request.headers.get("x-api-key", "") != expected:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "unauthorized",
                        "request_id": getattr(request.state, "request_id", None),
                        "method": request.method,
                        "path": request.url.path,
                    }
                )
            )
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "content-api"}

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()

    router = APIRouter(prefix=API_PREFIX)

    @router.post("/articles", response_model=Article, status_code=201)
    async def create_article(payload: ArticleCreateRequest, request: Request) -> Article:
        require_api_key(request)
        try:
            return await run_in_threadpool(request.app.state.articles.create, payload)
        except ContentApiError as exc:
            raise to_http_error(exc) from exc

    @router.get("/articles", response_model=ArticleListResponse)
    async def list_articles(
        request: Request,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=100),
        published: bool | None = None,
        tag: str | None = None,
        category: str | None = None,
        author: str | None = None,
        search_term: str | None = None,
    ) -> ArticleListResponse:
        return await run_in_threadpool(
            request.app.state.articles.list_articles,
            page=page,
            limit=limit,
            published=published,
            tag=tag,
            category=category,
            author=author,
            search_term=search_term,
        )

    @router.get("/articles/tags", response_model=list[TagCount])
    async def tags_with_counts(request: Request) -> list[TagCount]:
        return await run_in_threadpool(request.app.state.articles.tags_with_counts)

    @router.get("/articles/tags/popular", response_model=list[TagViews])
    async def popular_tags(
        request: Request,
        limit: int = Query(default=DEFAULT_POPULAR_LIMIT, ge=0, le=100),
    ) -> list[TagViews]:
        return await run_in_threadpool(request.app.state.articles.popular_tags, limit)

    @router.post("/articles/related-tags/refresh", response_model=RelatedTagsBatchRefresh)
    async def refresh_all_related_tags(request: Request) -> RelatedTagsBatchRefresh:
        require_api_key(request)
        return await run_in_threadpool(request.app.state.articles.refresh_all_related_tags)

    @router.get("/articles/{slug}", response_model=Article)
    async def get_article(slug: str, request: Request) -> Article:
        try:
            return await run_in_threadpool(request.app.state.articles.view, slug)
        except ContentApiError as exc:
            raise to_http_error(exc) from exc

    @router.get("/articles/{slug}/related", response_model=list[RelatedArticle])
    async def related_articles(
        slug: str,
        request: Request,
        limit: int = Query(default=DEFAULT_RELATED_LIMIT, ge=0, le=50),
    ) -> list[RelatedArticle]:
        try:
            return await run_in_threadpool(
                request.app.state.articles.related_articles,
                slug,
                limit,
            )
        except ContentApiError as exc:
            raise to_http_error(exc) from exc

    @router.post("/articles/{slug}/related-tags/refresh", response_model=RelatedTagsRefresh)
    async def refresh_related_tags(slug: str, request: Request) -> RelatedTagsRefresh:
        require_api_key(request)
        try:
            return await run_in_threadpool(request.app.state.articles.refresh_related_tags, slug)
        except ContentApiError as exc:
            raise to_http_error(exc) from exc

    @router.patch("/articles/{slug}", response_model=Article)
    async def update_article(
        slug: str,
        payload: ArticleUpdateRequest,
        request: Request,
    ) -> Article:
        require_api_key(request)
        try:
            return await run_in_threadpool(request.app.state.articles.update, slug, payload)
        except ContentApiError as exc:
            raise to_http_error(exc) from exc

    @router.delete("/articles/{slug}", status_code=204)
    async def delete_article(slug: str, request: Request) -> Response:
        require_api_key(request)
        try:
            await run_in_threadpool(request.app.state.articles.delete, slug)
        except ContentApiError as exc:
            raise to_http_error(exc) from exc
        return Response(status_code=204)

    @router.post("/positions", response_model=Position, status_code=201)
    async def create_position(payload: PositionCreateRequest, request: Request) -> Position:
        require_api_key(request)
        return await run_in_threadpool(request.app.state.positions.create, payload)

    @router.get("/positions", response_model=list[Position])
    async def list_positions(
        request: Request,
        department: str | None = None,
        type: str | None = None,
        location: str | None = None,
    ) -> list[Position]:
        return await run_in_threadpool(
            request.app.state.positions.list_positions,
            department=department,
            type=type,
            location=location,
        )

    @router.get("/positions/search", response_model=list[Position])
    async def search_positions(
        request: Request,
        q: str = Query(..., min_length=1),
    ) -> list[Position]:
        return await run_in_threadpool(request.app.state.positions.search, q)

    @router.get("/positions/{position_id}", response_model=Position)
    async def get_position(position_id: str, request: Request) -> Position:
        try:
            return await run_in_threadpool(request.app.state.positions.get_or_raise, position_id)
        except ContentApiError as exc:
            raise to_http_error(exc) from exc

    @router.patch("/positions/{position_id}", response_model=Position)
    async def update_position(
        position_id: str,
        payload: PositionUpdateRequest,
        request: Request,
    ) -> Position:
        require_api_key(request)
        try:
            return await run_in_threadpool(
                request.app.state.positions.update,
                position_id,
                payload,
            )
        except ContentApiError as exc:
            raise to_http_error(exc) from exc

    @router.delete("/positions/{position_id}", response_model=Position)
    async def delete_position(position_id: str, request: Request) -> Position:
        require_api_key(request)
        try:
            return await run_in_threadpool(request.app.state.positions.delete, position_id)
        except ContentApiError as exc:
            raise to_http_error(exc) from exc

    app.include_router(router)
    return app


app = create_app()
