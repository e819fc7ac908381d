from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any

from common.utils import fold_case, now_utc_iso

from content_api.errors import DuplicateSlugError
from content_api.models import Article, ArticleQuery, Position, SeoMetadata

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "content-api", "content.sqlite3")
LOGGER = logging.getLogger("content_api.repository")

ARTICLE_COLUMNS = """
    slug,
    title,
    content,
    description,
    tags_json,
    category,
    author,
    published,
    image_url,
    seo_json,
    tag_views_json,
    related_tags_json,
    created_at,
    updated_at
"""

POSITION_COLUMNS = """
    id,
    title,
    department,
    type,
    location,
    experience,
    description,
    requirements_json,
    created_at,
    updated_at
"""

# Article field -> (column, encoder) for partial updates.
ARTICLE_UPDATE_COLUMNS: dict[str, tuple[str, Any]] = {
    "slug": ("slug", str),
    "title": ("title", str),
    "content": ("content", str),
    "description": ("description", str),
    "tags": ("tags_json", json.dumps),
    "category": ("category", str),
    "author": ("author", str),
    "published": ("published", int),
    "image_url": ("image_url", lambda value: str(value) if value is not None else None),
    "seo": ("seo_json", json.dumps),
    "tag_views": ("tag_views_json", json.dumps),
    "related_tags": ("related_tags_json", json.dumps),
}

POSITION_UPDATE_COLUMNS: dict[str, tuple[str, Any]] = {
    "title": ("title", str),
    "department": ("department", str),
    "type": ("type", str),
    "location": ("location", str),
    "experience": ("experience", str),
    "description": ("description", str),
    "requirements": ("requirements_json", json.dumps),
}


class ContentRepository:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.create_function("fold_case", 1, fold_case, deterministic=True)
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS articles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    slug TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    description TEXT NOT NULL,
                    tags_json TEXT NOT NULL DEFAULT '[]',
                    category TEXT NOT NULL,
                    author TEXT NOT NULL,
                    published INTEGER NOT NULL DEFAULT 0,
                    image_url TEXT,
                    seo_json TEXT NOT NULL,
                    tag_views_json TEXT NOT NULL DEFAULT '{}',
                    related_tags_json TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_articles_published_created
                    ON articles (published, created_at);

                CREATE TABLE IF NOT EXISTS positions (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    department TEXT NOT NULL,
                    type TEXT NOT NULL,
                    location TEXT NOT NULL,
                    experience TEXT NOT NULL,
                    description TEXT NOT NULL,
                    requirements_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            self._connection.commit()
            LOGGER.info(
                json.dumps({"event": "store_connected", "database_path": str(self.database_path)})
            )

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def insert_article(self, values: dict[str, Any]) -> Article:
        with self._lock:
            now = now_utc_iso()
            image_url = values.get("image_url")
            try:
                self.connection.execute(
                    """
                    INSERT INTO articles (
                        slug,
                        title,
                        content,
                        description,
                        tags_json,
                        category,
                        author,
                        published,
                        image_url,
                        seo_json,
                        tag_views_json,
                        related_tags_json,
                        created_at,
                        updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, '{}', '{}', ?, ?)
                    """,
                    (
                        values["slug"],
                        values["title"],
                        values["content"],
                        values["description"],
                        json.dumps(values.get("tags", [])),
                        values["category"],
                        values["author"],
                        int(bool(values.get("published", False))),
                        str(image_url) if image_url is not None else None,
                        json.dumps(values["seo"]),
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                self.connection.rollback()
                raise DuplicateSlugError(values["slug"]) from exc
            self.connection.commit()
            return self.get_article_or_raise(values["slug"])

    def get_article_or_raise(self, slug: str) -> Article:
        article = self.find_article(slug)
        if article is None:
            raise KeyError(f"Unknown slug: {slug}")
        return article

    def find_article(self, slug: str) -> Article | None:
        with self._lock:
            row = self.connection.execute(
                f"SELECT {ARTICLE_COLUMNS} FROM articles WHERE slug = ?",
                (slug,),
            ).fetchone()
            if row is None:
                return None
            return self._to_article(row)

    def find_articles(
        self,
        query: ArticleQuery,
        *,
        skip: int = 0,
        limit: int | None = None,
        newest_first: bool = True,
    ) -> list[Article]:
        with self._lock:
            where, params = self._article_filters(query)
            sql = f"SELECT {ARTICLE_COLUMNS} FROM articles{where}"
            if newest_first:
                sql += " ORDER BY created_at DESC, id DESC"
            else:
                sql += " ORDER BY id ASC"
            sql += " LIMIT ? OFFSET ?"
            params.append(limit if limit is not None else -1)
            params.append(skip)
            cursor = self.connection.execute(sql, tuple(params))
            return [self._to_article(row) for row in cursor.fetchall()]

    def count_articles(self, query: ArticleQuery) -> int:
        with self._lock:
            where, params = self._article_filters(query)
            row = self.connection.execute(
                f"SELECT COUNT(1) AS c FROM articles{where}",
                tuple(params),
            ).fetchone()
            return int(row["c"])

    def update_article(
        self,
        slug: str,
        changes: dict[str, Any],
        *,
        touch: bool = True,
    ) -> Article | None:
        with self._lock:
            assignments: list[str] = []
            params: list[Any] = []
            for field_name, value in changes.items():
                if field_name not in ARTICLE_UPDATE_COLUMNS:
                    raise ValueError(f"Article field {field_name!r} cannot be updated.")
                column, encode = ARTICLE_UPDATE_COLUMNS[field_name]
                assignments.append(f"{column} = ?")
                params.append(encode(value))
            if touch:
                assignments.append("updated_at = ?")
                params.append(now_utc_iso())
            if not assignments:
                return self.find_article(slug)

            params.append(slug)
            try:
                cursor = self.connection.execute(
                    f"UPDATE articles SET {', '.join(assignments)} WHERE slug = ?",
                    tuple(params),
                )
            except sqlite3.IntegrityError as exc:
                self.connection.rollback()
                raise DuplicateSlugError(str(changes.get("slug", slug))) from exc
            self.connection.commit()
            if cursor.rowcount == 0:
                return None
            return self.find_article(str(changes.get("slug", slug)))

    def delete_article(self, slug: str) -> bool:
        with self._lock:
            cursor = self.connection.execute("DELETE FROM articles WHERE slug = ?", (slug,))
            self.connection.commit()
            return cursor.rowcount > 0

    def insert_position(self, values: dict[str, Any]) -> Position:
        with self._lock:
            now = now_utc_iso()
            position_id = uuid.uuid4().hex
            self.connection.execute(
                """
                INSERT INTO positions (
                    id,
                    title,
                    department,
                    type,
                    location,
                    experience,
                    description,
                    requirements_json,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    position_id,
                    values["title"],
                    values["department"],
                    values["type"],
                    values["location"],
                    values["experience"],
                    values["description"],
                    json.dumps(values["requirements"]),
                    now,
                    now,
                ),
            )
            self.connection.commit()
            position = self.get_position(position_id)
            if position is None:
                raise RuntimeError(f"Position {position_id} vanished after insert")
            return position

    def get_position(self, position_id: str) -> Position | None:
        with self._lock:
            row = self.connection.execute(
                f"SELECT {POSITION_COLUMNS} FROM positions WHERE id = ?",
                (position_id,),
            ).fetchone()
            if row is None:
                return None
            return self._to_position(row)

    def list_positions(self, filters: dict[str, str]) -> list[Position]:
        with self._lock:
            query = f"SELECT {POSITION_COLUMNS} FROM positions"
            clauses: list[str] = []
            params: list[Any] = []
            for column in ("department", "type", "location"):
                value = filters.get(column)
                if value:
                    clauses.append(f"{column} = ?")
                    params.append(value)
            if clauses:
                query += " WHERE " + " AND ".join(clauses)
            query += " ORDER BY rowid"
            cursor = self.connection.execute(query, tuple(params))
            return [self._to_position(row) for row in cursor.fetchall()]

    def search_positions(self, text: str) -> list[Position]:
        with self._lock:
            needle = fold_case(text)
            cursor = self.connection.execute(
                f"""
                SELECT {POSITION_COLUMNS}
                FROM positions
                WHERE instr(fold_case(title), ?) > 0 OR instr(fold_case(description), ?) > 0
                ORDER BY rowid
                """,
                (needle, needle),
            )
            return [self._to_position(row) for row in cursor.fetchall()]

    def update_position(self, position_id: str, changes: dict[str, Any]) -> Position | None:
        with self._lock:
            assignments: list[str] = []
            params: list[Any] = []
            for field_name, value in changes.items():
                column, encode = POSITION_UPDATE_COLUMNS[field_name]
                assignments.append(f"{column} = ?")
                params.append(encode(value))
            assignments.append("updated_at = ?")
            params.append(now_utc_iso())
            params.append(position_id)
            cursor = self.connection.execute(
                f"UPDATE positions SET {', '.join(assignments)} WHERE id = ?",
                tuple(params),
            )
            self.connection.commit()
            if cursor.rowcount == 0:
                return None
            return self.get_position(position_id)

    def delete_position(self, position_id: str) -> Position | None:
        with self._lock:
            position = self.get_position(position_id)
            if position is None:
                return None
            self.connection.execute("DELETE FROM positions WHERE id = ?", (position_id,))
            self.connection.commit()
            return position

    def _article_filters(self, query: ArticleQuery) -> tuple[str, list[Any]]:
        filters: list[str] = []
        params: list[Any] = []
        if query.published is not None:
            filters.append("published = ?")
            params.append(int(query.published))
        if query.tag:
            filters.append(
                "EXISTS (SELECT 1 FROM json_each(articles.tags_json) WHERE json_each.value = ?)"
            )
            params.append(query.tag)
        if query.tags_any is not None:
            if not query.tags_any:
                filters.append("0")
            else:
                placeholders = ", ".join("?" for _ in query.tags_any)
                filters.append(
                    "EXISTS (SELECT 1 FROM json_each(articles.tags_json) "
                    f"WHERE json_each.value IN ({placeholders}))"
                )
                params.extend(query.tags_any)
        if query.category:
            filters.append("category = ?")
            params.append(query.category)
        if query.author:
            filters.append("author = ?")
            params.append(query.author)
        if query.search_term:
            # Unicode case folding in Python; sqlite's LIKE only folds ASCII.
            needle = fold_case(query.search_term)
            filters.append(
                "(instr(fold_case(title), ?) > 0 OR instr(fold_case(content), ?) > 0 "
                "OR instr(fold_case(description), ?) > 0)"
            )
            params.extend([needle, needle, needle])
        if query.exclude_slug:
            filters.append("slug != ?")
            params.append(query.exclude_slug)
        if not filters:
            return "", params
        return " WHERE " + " AND ".join(filters), params

    def _to_article(self, row: sqlite3.Row) -> Article:
        return Article(
            slug=row["slug"],
            title=row["title"],
            content=row["content"],
            description=row["description"],
            tags=json.loads(row["tags_json"]),
            category=row["category"],
            author=row["author"],
            published=bool(row["published"]),
            image_url=row["image_url"],
            seo=SeoMetadata(**json.loads(row["seo_json"])),
            tag_views=json.loads(row["tag_views_json"]),
            related_tags=json.loads(row["related_tags_json"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _to_position(self, row: sqlite3.Row) -> Position:
        return Position(
            id=row["id"],
            title=row["title"],
            department=row["department"],
            type=row["type"],
            location=row["location"],
            experience=row["experience"],
            description=row["description"],
            requirements=json.loads(row["requirements_json"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
