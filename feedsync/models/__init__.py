"""Data models for feedsync."""

from .article import (
    ArticleMetadata,
    NewArticle,
    NotReadable,
    NotReadableType,
    RawFeedEntry,
    ReadableArticle,
)
from .base import DBModel, WireModel
from .feed import Feed, FeedType
from .jobs import (
    ExtractArticleMetadataInput,
    ImportArticleInput,
    RefreshArticleContentInput,
    SyncFeedArticlesInput,
)

__all__ = [
    "ArticleMetadata",
    "DBModel",
    "ExtractArticleMetadataInput",
    "Feed",
    "FeedType",
    "ImportArticleInput",
    "NewArticle",
    "NotReadable",
    "NotReadableType",
    "RawFeedEntry",
    "ReadableArticle",
    "RefreshArticleContentInput",
    "SyncFeedArticlesInput",
    "WireModel",
]
