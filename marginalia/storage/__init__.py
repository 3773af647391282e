"""
Storage Package.

Persistence for research records and read access to articles.
"""

from marginalia.storage.base import UNSET, ArticleStore, ResearchStore
from marginalia.storage.research_store import SQLiteResearchStore
from marginalia.storage.article_store import InMemoryArticleStore, SQLiteArticleStore

__all__ = [
    "UNSET",
    "ArticleStore",
    "ResearchStore",
    "SQLiteResearchStore",
    "SQLiteArticleStore",
    "InMemoryArticleStore",
]
