"""Payloads carried by queued jobs."""

from typing import Optional

from pydantic import Field

from .base import WireModel
from .feed import Feed


class SyncFeedArticlesInput(WireModel):
    """Input data for syncing articles from a feed."""

    feed: Feed


class ImportArticleInput(WireModel):
    """Input data for importing a single article."""

    url: str
    title: Optional[str] = None
    make_readable: bool = Field(True, description="Extract and cache a readable view")


class RefreshArticleContentInput(WireModel):
    """Input data for refreshing an article's readable content."""

    slug: str
    url: str


class ExtractArticleMetadataInput(WireModel):
    """Input data for extracting article metadata."""

    url: str
