"""
SQLite-backed research record storage.
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from marginalia.core.research.models import (
    ResearchRecord,
    ResearchStatus,
    dump_questions,
    dump_sources,
)
from marginalia.storage.base import UNSET, ResearchStore
from marginalia.utils.logging import get_logger
from marginalia.utils.timefmt import now_civil

logger = get_logger(__name__)


class SQLiteResearchStore(ResearchStore):
    """
    Research records in the ``article_research`` table.

    Upserts read, merge and write under one lock so concurrent writers for
    the same article cannot lose each other's fields.
    """

    def __init__(self, db_path: str | Path | None = None, tz_name: Optional[str] = None):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file.
                     Defaults to ``settings.research.database``.
            tz_name: Civil timezone for timestamps.
                     Defaults to ``settings.research.timezone``.
        """
        if db_path is None:
            from marginalia.config import get_settings
            db_path = get_settings().research.database
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.tz_name = tz_name
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    async def _ensure_initialized(self):
        """Ensure the table exists."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS article_research (
                        article_id INTEGER PRIMARY KEY,
                        status TEXT NOT NULL DEFAULT 'none',
                        summary_md TEXT NOT NULL DEFAULT '',
                        sources_json TEXT NOT NULL DEFAULT '[]',
                        questions_json TEXT NOT NULL DEFAULT '[]',
                        error_message TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        expires_at TEXT
                    )
                """)
                await db.execute(
                    "CREATE INDEX IF NOT EXISTS idx_article_research_expires "
                    "ON article_research(expires_at)"
                )
                await db.commit()

            self._initialized = True
            logger.info(f"Research store initialized at {self.db_path}")

    @asynccontextmanager
    async def _get_db(self):
        """Get database connection."""
        await self._ensure_initialized()
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            yield db

    @staticmethod
    async def _fetch_row(db, article_id: int):
        cursor = await db.execute(
            "SELECT * FROM article_research WHERE article_id = ?",
            (article_id,),
        )
        return await cursor.fetchone()

    async def get(self, article_id: int) -> Optional[ResearchRecord]:
        async with self._get_db() as db:
            row = await self._fetch_row(db, article_id)
        return ResearchRecord.from_row(row) if row else None

    async def upsert(
        self,
        article_id: int,
        *,
        status: Any = UNSET,
        summary_md: Any = UNSET,
        sources: Any = UNSET,
        questions: Any = UNSET,
        error_message: Any = UNSET,
        expires_at: Any = UNSET,
    ) -> ResearchRecord:
        async with self._write_lock, self._get_db() as db:
            existing = await self._fetch_row(db, article_id)
            now = now_civil(self.tz_name)

            def pick(value, column, default):
                if value is not UNSET:
                    return value
                if existing is not None:
                    return existing[column]
                return default

            status_value = pick(status, "status", ResearchStatus.NONE.value)
            if isinstance(status_value, ResearchStatus):
                status_value = status_value.value

            merged = (
                status_value,
                pick(summary_md, "summary_md", ""),
                dump_sources(sources) if sources is not UNSET else pick(UNSET, "sources_json", "[]"),
                dump_questions(questions) if questions is not UNSET else pick(UNSET, "questions_json", "[]"),
                pick(error_message, "error_message", None),
                pick(expires_at, "expires_at", None),
            )

            if existing is None:
                await db.execute(
                    """
                    INSERT INTO article_research
                    (status, summary_md, sources_json, questions_json, error_message,
                     expires_at, article_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    merged + (article_id, now, now),
                )
            else:
                await db.execute(
                    """
                    UPDATE article_research
                    SET status = ?,
                        summary_md = ?,
                        sources_json = ?,
                        questions_json = ?,
                        error_message = ?,
                        expires_at = ?,
                        updated_at = ?
                    WHERE article_id = ?
                    """,
                    merged + (now, article_id),
                )
            await db.commit()

            row = await self._fetch_row(db, article_id)

        logger.debug(f"Research record for article {article_id} -> {row['status']}")
        return ResearchRecord.from_row(row)

    async def list_expired(self, now: Optional[str] = None) -> list[ResearchRecord]:
        now = now or now_civil(self.tz_name)
        async with self._get_db() as db:
            cursor = await db.execute(
                """
                SELECT * FROM article_research
                WHERE status = ? AND expires_at IS NOT NULL AND expires_at <= ?
                ORDER BY expires_at
                """,
                (ResearchStatus.READY.value, now),
            )
            rows = await cursor.fetchall()
        return [ResearchRecord.from_row(row) for row in rows]
