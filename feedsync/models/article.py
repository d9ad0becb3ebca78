"""Article models produced by the synchronization pipeline."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import WireModel


class RawFeedEntry(WireModel):
    """Candidate article parsed from a feed document."""

    title: Optional[str] = Field(None, description="Entry title")
    link: Optional[str] = Field(None, description="Entry URL")
    published_at: Optional[datetime] = Field(None, description="pubDate/isoDate, if parseable")
    summary: Optional[str] = Field(None, description="Entry summary")


class ArticleMetadata(WireModel):
    """Structured metadata for an article, keyed by link."""

    title: str = Field(..., description="Article title")
    link: str = Field(..., description="Article URL (unique key)")
    description: Optional[str] = Field(None, description="Short description")
    image: Optional[str] = Field(None, description="Absolute image URL")
    author: Optional[str] = Field(None, description="Author name")
    site_name: str = Field(..., description="Publishing site")
    readable: bool = Field(False, description="Whether a readable view was derived")
    published_at: datetime = Field(..., description="Publication timestamp")


class NewArticle(ArticleMetadata):
    """Article row to insert for a feed."""

    feed_id: str = Field(..., description="Owning feed")


class ReadableArticle(WireModel):
    """Reader-mode rendering of an article."""

    title: str = Field(..., description="Extracted title")
    content: str = Field(..., description="Sanitized article HTML")
    text_content: str = Field(..., description="Plain text of the article")
    length: int = Field(..., description="Length of text_content")
    excerpt: str = Field("", description="Short excerpt")
    byline: str = Field("", description="Author line")
    dir: str = Field("", description="Text direction")
    lang: str = Field("", description="Document language")
    site_name: str = Field("", description="Publishing site")
    published_time: str = Field("", description="Publication time as published")
    content_hash: str = Field(..., description="Hash of normalized text_content")
    created_at: datetime = Field(..., description="Extraction timestamp")


class NotReadableType:
    """Outcome of a page that does not look like an article."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NotReadable"


NotReadable = NotReadableType()
