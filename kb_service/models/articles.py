"""Article models returned by the knowledge base client."""

from datetime import datetime, timezone
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ArticleRecord(BaseModel):
    """A single knowledge base article.

    Records are immutable once produced by the parser; the caches replace
    them wholesale instead of editing them.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Engine article identifier")
    title: str = Field(..., description="Article title")
    content: str = Field("", description="Plain text content with markup stripped")
    url: Optional[str] = Field(None, description="Public URL of the article")
    source: str = Field("freshdesk_kb", description="Source tag")
    full_content_available: bool = Field(
        False,
        description="True when content is the full article rather than a search excerpt"
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        """Engine ids arrive as ints in JSON payloads."""
        if isinstance(v, int):
            return str(v)
        return v


class SearchResult(BaseModel):
    """Parsed result of a knowledge base search."""

    query: str
    category: Optional[str] = None
    page: int = 1
    per_page: int = 10
    total_results: int = 0
    articles_on_page: int = 0
    articles: List[ArticleRecord] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CachedArticle(BaseModel):
    """An article served from one of the cache tiers."""

    record: ArticleRecord
    cached_at: datetime
    expires_at: datetime
    source: str = Field(..., description="fast_tier or durable")
