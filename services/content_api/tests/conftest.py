from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from content_api.main import create_app
from content_api.repository import ContentRepository
from fastapi.testclient import TestClient


def build_article_payload(slug: str, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": f"Article {slug}",
        "slug": slug,
        "content": "Shipping reliable services with small, boring deploys.",
        "description": "Notes from the platform team",
        "tags": [],
        "category": "DevOps",
        "author": "Jordan Lee",
        "published": True,
        "seo": {
            "meta_title": f"Article {slug}",
            "meta_description": "Notes from the platform team",
            "meta_keywords": ["devops"],
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def article_payload() -> Callable[..., dict[str, Any]]:
    return build_article_payload


@pytest.fixture
def repository(tmp_path: Path):
    repo = ContentRepository(database_path=str(tmp_path / "content.sqlite3"))
    repo.connect()
    yield repo
    repo.close()


@pytest.fixture
def client(tmp_path: Path):
    app = create_app(database_path=str(tmp_path / "content.sqlite3"))
    with TestClient(app) as test_client:
        yield test_client
