"""
Article store adapters.

The blog owns article CRUD; the research agent only reads title, body and
visibility through these adapters.
"""

from pathlib import Path
from typing import Iterable, Optional

import aiosqlite

from marginalia.core.research.models import Article
from marginalia.storage.base import ArticleStore
from marginalia.utils.logging import get_logger

logger = get_logger(__name__)


class SQLiteArticleStore(ArticleStore):
    """Reads the blog's ``articles`` table. Never writes."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            from marginalia.config import get_settings
            db_path = get_settings().research.database
        self.db_path = Path(db_path)

    async def get_article(self, article_id: int) -> Optional[Article]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT id, title, content_html, is_published, author_user_id
                FROM articles WHERE id = ?
                """,
                (article_id,),
            )
            row = await cursor.fetchone()

        if row is None:
            return None
        return Article(
            id=row["id"],
            title=row["title"] or "",
            content_html=row["content_html"] or "",
            is_published=bool(row["is_published"]),
            author_user_id=row["author_user_id"],
        )


class InMemoryArticleStore(ArticleStore):
    """Dict-backed store for tests and one-off CLI runs."""

    def __init__(self, articles: Optional[Iterable[Article]] = None):
        self._articles: dict[int, Article] = {a.id: a for a in (articles or [])}

    def add(self, article: Article) -> None:
        self._articles[article.id] = article

    async def get_article(self, article_id: int) -> Optional[Article]:
        return self._articles.get(article_id)
